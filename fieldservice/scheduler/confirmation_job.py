"""Job periódico: detecta visitas sin confirmar con el plazo vencido."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, tzinfo

import structlog

from fieldservice.models.maintenance import MaintenanceRecord
from fieldservice.persistence.repository import MaintenanceRepository
from fieldservice.services.clock import as_utc, utc_now
from fieldservice.services.maintenance_workflow import MaintenanceWorkflow

logger = structlog.get_logger()


class ConfirmationWatchJob:
    """Ciclo ejecutado periódicamente por APScheduler.

    Para cada mantenimiento con la confirmación vencida marca al coordinador
    como notificado. Un error en un mantenimiento no interrumpe el ciclo.
    """

    def __init__(
        self,
        repository: MaintenanceRepository,
        workflow: MaintenanceWorkflow,
        clock: Callable[[], datetime] = utc_now,
        timezone: tzinfo = UTC,
    ) -> None:
        self._repo = repository
        self._workflow = workflow
        self._clock = clock
        self._tz = timezone

    async def run(self) -> list[MaintenanceRecord]:
        """Ejecuta un ciclo. Devuelve los mantenimientos notificados en este ciclo.

        Los errores al listar se propagan para que APScheduler dispare EVENT_JOB_ERROR.
        """
        log = logger.bind(job="confirmation_watch")
        log.info("confirmation_watch_started")

        overdue = await self._repo.list_overdue_confirmations(as_utc(self._clock(), self._tz))
        if not overdue:
            log.info("confirmation_watch_completed", notified=0)
            return []

        log.info("overdue_confirmations_found", count=len(overdue))

        notified = []
        for record in overdue:
            result = await self._safe_notify(record)
            if result is not None and result.confirmation.coordinator_notified:
                notified.append(result)

        log.info("confirmation_watch_completed", notified=len(notified))
        return notified

    async def _safe_notify(self, record: MaintenanceRecord) -> MaintenanceRecord | None:
        """Notifica un mantenimiento capturando errores para no interrumpir el ciclo."""
        log = logger.bind(maintenance_id=record.id)
        try:
            result = await self._workflow.notify_coordinator_if_overdue(record.id)
        except Exception as exc:
            log.error("coordinator_notification_error", error=str(exc))
            return None

        if not result.confirmation.coordinator_notified:
            # Confirmado o reagendado entre la consulta y la transición
            log.info("coordinator_notification_skipped")
            return result

        deadline = result.confirmation.confirmation_deadline
        log.info("coordinator_notified", deadline=deadline.isoformat() if deadline else None)
        return result
