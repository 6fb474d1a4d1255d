"""Entry point del servicio de mantenimientos.

Uso:
    uv run python main.py          # Scheduler: revisión de confirmaciones cada N minutos
    uv run python main.py --now    # Ejecución inmediata (un solo ciclo)
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from functools import partial
from zoneinfo import ZoneInfo

import structlog

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.logging import setup_logging
from config.settings import settings
from fieldservice.clients.field_api import FieldApiClient
from fieldservice.persistence.repository import MaintenanceRepository
from fieldservice.persistence.technician_repository import TechnicianRepository
from fieldservice.scheduler.confirmation_job import ConfirmationWatchJob
from fieldservice.services.collaborators import DeviceProgressSource, TechnicianAvailability
from fieldservice.services.maintenance_workflow import MaintenanceWorkflow
from fieldservice.services.technician_directory import TechnicianDirectory

logger = structlog.get_logger()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mantenimientos - vigilancia de confirmaciones")
    parser.add_argument(
        "--now",
        action="store_true",
        help="Ejecutar un ciclo de revisión inmediato y salir",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    setup_logging(settings.log_level, json_logs=settings.log_json)

    log = logger.bind(mode="now" if args.now else "scheduler")
    log.info("starting")

    # Inicializar base de datos
    repo = MaintenanceRepository(settings.database_path)
    await repo.initialize()

    # Reloj en la zona configurada; el flujo guarda todo en UTC
    tz = ZoneInfo(settings.timezone)
    clock = partial(datetime.now, tz)

    async with AsyncExitStack() as stack:
        # Directorio y progreso: API del backend si está configurada, si no, local
        directory: TechnicianAvailability
        device_progress: DeviceProgressSource | None = None
        if settings.field_api_base_url:
            api = await stack.enter_async_context(
                FieldApiClient(settings.field_api_base_url, token=settings.field_api_token)
            )
            directory = api
            device_progress = api
            log.info("using_field_api", base_url=settings.field_api_base_url)
        else:
            directory = TechnicianDirectory(
                TechnicianRepository(settings.database_path), repo
            )

        workflow = MaintenanceWorkflow(
            repository=repo,
            directory=directory,
            device_progress=device_progress,
            clock=clock,
            confirmation_window=timedelta(hours=settings.confirmation_window_hours),
            timezone=tz,
        )
        job = ConfirmationWatchJob(repository=repo, workflow=workflow, clock=clock, timezone=tz)

        if args.now:
            log.info("running_single_cycle")
            await job.run()
            log.info("single_cycle_completed")
            return

        # Modo scheduler
        await _run_scheduler(job, log)


async def _run_scheduler(job: ConfirmationWatchJob, log: structlog.stdlib.BoundLogger) -> None:
    """Configura APScheduler y ejecuta hasta recibir señal de parada."""
    scheduler = AsyncIOScheduler(timezone=settings.timezone)

    scheduler.add_job(
        job.run,
        trigger="interval",
        minutes=settings.confirmation_watch_minutes,
        id="confirmation_watch",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    def on_job_error(event: JobExecutionEvent) -> None:
        if event.exception:
            log.error(
                "scheduled_job_failed",
                job_id=event.job_id,
                error=f"{type(event.exception).__name__}: {event.exception}",
            )

    scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
    scheduler.start()

    log.info(
        "scheduler_started",
        jobs=[f"confirmation_watch (cada {settings.confirmation_watch_minutes} min)"],
        timezone=settings.timezone,
    )

    # Esperar hasta señal de parada
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        log.info("shutdown_signal_received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await stop_event.wait()

    log.info("shutting_down")
    scheduler.shutdown(wait=True)
    log.info("scheduler_stopped")


if __name__ == "__main__":
    asyncio.run(main())
