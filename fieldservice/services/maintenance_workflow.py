"""Servicio de flujo de mantenimientos: aplica transiciones de forma atómica."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, timedelta, tzinfo

import structlog

from fieldservice.models.enums import MaintenanceEvent, MaintenanceType, Shift
from fieldservice.models.maintenance import (
    DeviceProgress,
    GeoLocation,
    MaintenanceRecord,
    ProgressSummary,
)
from fieldservice.persistence.errors import ConflictError, SlotTakenError
from fieldservice.persistence.repository import MaintenanceRepository
from fieldservice.services.collaborators import DeviceProgressSource, TechnicianAvailability
from fieldservice.services.clock import as_utc, utc_now
from fieldservice.services.locks import KeyedLocks
from fieldservice.workflow import devices, scheduling
from fieldservice.workflow import state_machine as sm
from fieldservice.workflow.errors import Guard, GuardViolation, WorkflowError
from fieldservice.workflow.payment import Amount

logger = structlog.get_logger()

E = MaintenanceEvent

Transition = Callable[[MaintenanceRecord, datetime], Awaitable[MaintenanceRecord]]
SlotKey = tuple[int, date, Shift]

DEFAULT_CONFIRMATION_WINDOW = timedelta(hours=24)


class MaintenanceWorkflow:
    """Punto de entrada de la capa de UI/API para operar sobre mantenimientos.

    Cada operación es una transacción de un solo record:
    1. Lock por record (dos transiciones sobre el mismo record nunca se intercalan).
    2. load → transición pura (guards incluidos) → save con version optimista.
    3. Si save lanza ConflictError se recarga el record y se reevalúa la
       transición una única vez; un segundo conflicto se propaga al llamador.

    Las asignaciones además toman un lock por (técnico, fecha, turno) que cubre
    la consulta de disponibilidad y la escritura. El índice único de la BD
    cubre el caso de varios procesos.

    Errores de colaboradores (directorio, BD) se propagan sin reintentos.

    Todas las marcas de tiempo se guardan en UTC. Los datetime naive (del reloj
    o de los plazos que envía el llamador) se interpretan en `timezone`.
    """

    def __init__(
        self,
        repository: MaintenanceRepository,
        directory: TechnicianAvailability,
        device_progress: DeviceProgressSource | None = None,
        clock: Callable[[], datetime] = utc_now,
        confirmation_window: timedelta = DEFAULT_CONFIRMATION_WINDOW,
        timezone: tzinfo = UTC,
    ) -> None:
        self._repo = repository
        self._directory = directory
        self._device_progress = device_progress
        self._clock = clock
        self._confirmation_window = confirmation_window
        self._tz = timezone
        self._record_locks = KeyedLocks()
        self._slot_locks = KeyedLocks()

    # ── Creación y consulta ─────────────────────────────────────

    async def create(
        self,
        maintenance_type: MaintenanceType,
        device_ids: list[int],
        client_id: int | None = None,
        description: str | None = None,
        device_descriptions: dict[int, str] | None = None,
    ) -> MaintenanceRecord:
        """Registra una solicitud nueva en estado pending."""
        now = self._now()
        descriptions = device_descriptions or {}
        record = MaintenanceRecord(
            type=maintenance_type,
            client_id=client_id,
            description=description,
            devices=[
                DeviceProgress(client_device_id=d, description=descriptions.get(d))
                for d in device_ids
            ],
            created_at=now,
            updated_at=now,
        )
        return await self._repo.create(record)

    async def get(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._repo.load(maintenance_id)

    async def available_events(self, maintenance_id: int) -> list[MaintenanceEvent]:
        return sm.available_events(await self._repo.load(maintenance_id))

    async def progress_summary(self, maintenance_id: int) -> ProgressSummary:
        record = await self._repo.load(maintenance_id)
        return devices.summarize(record.devices)

    # ── Cotización y pago ───────────────────────────────────────

    async def submit_quotation(
        self, maintenance_id: int, value: Amount, price_support_ref: str
    ) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.SUBMIT_QUOTATION,
            _sync(lambda r, now: sm.submit_quotation(r, value, price_support_ref, now=now)),
        )

    async def mark_no_payment_required(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.MARK_NO_PAYMENT_REQUIRED,
            _sync(lambda r, now: sm.mark_no_payment_required(r, now=now)),
        )

    async def edit_quotation(
        self, maintenance_id: int, value: Amount, price_support_ref: str | None = None
    ) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.EDIT_QUOTATION,
            _sync(lambda r, now: sm.edit_quotation(r, value, price_support_ref, now=now)),
        )

    async def upload_payment_proof(self, maintenance_id: int, proof_ref: str) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.UPLOAD_PAYMENT_PROOF,
            _sync(lambda r, now: sm.upload_payment_proof(r, proof_ref, now=now)),
        )

    async def verify_payment(self, maintenance_id: int, accepted: bool) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.VERIFY_PAYMENT,
            _sync(lambda r, now: sm.verify_payment(r, accepted, now=now)),
        )

    async def approve(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id, E.APPROVE, _sync(lambda r, now: sm.approve(r, now=now))
        )

    async def reject(self, maintenance_id: int, reason: str | None = None) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id, E.REJECT, _sync(lambda r, now: sm.reject(r, reason, now=now))
        )

    # ── Asignación, reagendamiento y cancelación ────────────────

    async def assign_technician(
        self, maintenance_id: int, technician_id: int, day: date, shift: Shift
    ) -> MaintenanceRecord:
        async def transition(record: MaintenanceRecord, now: datetime) -> MaintenanceRecord:
            sm.ensure_allowed(record, E.ASSIGN_TECHNICIAN)
            available = await self._directory.is_available(
                technician_id, day, shift, exclude_maintenance_id=record.id
            )
            return sm.assign_technician(
                record, technician_id, day, shift, available=available, now=now
            )

        return await self._apply(
            maintenance_id,
            E.ASSIGN_TECHNICIAN,
            transition,
            slot_of=lambda _: (technician_id, day, shift),
        )

    async def reschedule(
        self,
        maintenance_id: int,
        day: date,
        shift: Shift,
        technician_id: int | None = None,
        confirmation_deadline: datetime | None = None,
    ) -> MaintenanceRecord:
        """Cambia fecha/turno (y opcionalmente técnico) sin cambiar el status.

        Se valida solo el turno nuevo, excluyendo la propia asignación.
        """

        def target(record: MaintenanceRecord) -> int | None:
            return technician_id if technician_id is not None else record.technician_id

        async def transition(record: MaintenanceRecord, now: datetime) -> MaintenanceRecord:
            sm.ensure_allowed(record, E.RESCHEDULE)
            tech = target(record)
            available = tech is not None and await self._directory.is_available(
                tech, day, shift, exclude_maintenance_id=record.id
            )
            return scheduling.reschedule(
                record,
                day,
                shift,
                technician_id,
                available=available,
                confirmation_deadline=self._utc(confirmation_deadline),
                now=now,
            )

        def slot_of(record: MaintenanceRecord) -> SlotKey | None:
            tech = target(record)
            return (tech, day, shift) if tech is not None else None

        return await self._apply(maintenance_id, E.RESCHEDULE, transition, slot_of=slot_of)

    async def cancel(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id, E.CANCEL, _sync(lambda r, now: scheduling.cancel(r, now=now))
        )

    # ── Ejecución en campo ──────────────────────────────────────

    async def start_work(
        self, maintenance_id: int, geolocation: GeoLocation | None = None
    ) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.START_WORK,
            _sync(lambda r, now: sm.start_work(r, geolocation=geolocation, now=now)),
        )

    async def pause_work(
        self,
        maintenance_id: int,
        reason: str | None = None,
        geolocation: GeoLocation | None = None,
    ) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.PAUSE_WORK,
            _sync(lambda r, now: sm.pause_work(r, reason, geolocation=geolocation, now=now)),
        )

    async def resume_work(
        self, maintenance_id: int, geolocation: GeoLocation | None = None
    ) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.RESUME_WORK,
            _sync(lambda r, now: sm.resume_work(r, geolocation=geolocation, now=now)),
        )

    async def update_device_progress(
        self,
        maintenance_id: int,
        client_device_id: int,
        completed_indices: list[int],
        items_total: int | None = None,
    ) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.UPDATE_DEVICE_PROGRESS,
            _sync(
                lambda r, now: sm.update_device_progress(
                    r, client_device_id, completed_indices, items_total, now=now
                )
            ),
        )

    async def complete_work(
        self, maintenance_id: int, geolocation: GeoLocation | None = None
    ) -> MaintenanceRecord:
        async def transition(record: MaintenanceRecord, now: datetime) -> MaintenanceRecord:
            sm.ensure_allowed(record, E.COMPLETE_WORK)
            if self._device_progress is not None:
                done = await self._device_progress.all_devices_completed(record.id)
            else:
                done = record.all_devices_completed
            return sm.complete_work(
                record, devices_completed=done, geolocation=geolocation, now=now
            )

        return await self._apply(maintenance_id, E.COMPLETE_WORK, transition)

    # ── Confirmación del cliente ────────────────────────────────

    async def request_confirmation(
        self, maintenance_id: int, deadline: datetime | None = None
    ) -> MaintenanceRecord:
        """Activa la confirmación. Sin deadline explícito se usa la ventana por defecto."""
        return await self._apply(
            maintenance_id,
            E.REQUEST_CONFIRMATION,
            _sync(
                lambda r, now: sm.request_confirmation(
                    r, self._utc(deadline) or now + self._confirmation_window, now=now
                )
            ),
        )

    async def confirm_by_client(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.CONFIRM_BY_CLIENT,
            _sync(lambda r, now: sm.confirm_by_client(r, now=now)),
        )

    async def notify_coordinator_if_overdue(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.NOTIFY_COORDINATOR,
            _sync(lambda r, now: sm.notify_coordinator_if_overdue(r, now=now)),
        )

    async def mark_coordinator_called(self, maintenance_id: int) -> MaintenanceRecord:
        return await self._apply(
            maintenance_id,
            E.MARK_COORDINATOR_CALLED,
            _sync(lambda r, now: sm.mark_coordinator_called(r, now=now)),
        )

    # ── Internals ───────────────────────────────────────────────

    def _now(self) -> datetime:
        return as_utc(self._clock(), self._tz)

    def _utc(self, value: datetime | None) -> datetime | None:
        return as_utc(value, self._tz) if value is not None else None

    async def _apply(
        self,
        maintenance_id: int,
        event: MaintenanceEvent,
        transition: Transition,
        slot_of: Callable[[MaintenanceRecord], SlotKey | None] | None = None,
    ) -> MaintenanceRecord:
        log = logger.bind(maintenance_id=maintenance_id, event=event.value)

        async with self._record_locks.hold(maintenance_id):
            record = await self._repo.load(maintenance_id)
            try:
                return await self._run(record, transition, slot_of, log)
            except ConflictError:
                log.warning("save_conflict_retry", version=record.version)

            # Un único reintento: recargar y reevaluar guards con el estado nuevo
            record = await self._repo.load(maintenance_id)
            return await self._run(record, transition, slot_of, log)

    async def _run(
        self,
        record: MaintenanceRecord,
        transition: Transition,
        slot_of: Callable[[MaintenanceRecord], SlotKey | None] | None,
        log: structlog.stdlib.BoundLogger,
    ) -> MaintenanceRecord:
        slot = slot_of(record) if slot_of else None
        if slot is None:
            return await self._commit(record, transition, log)
        async with self._slot_locks.hold(slot):
            return await self._commit(record, transition, log)

    async def _commit(
        self,
        record: MaintenanceRecord,
        transition: Transition,
        log: structlog.stdlib.BoundLogger,
    ) -> MaintenanceRecord:
        try:
            updated = await transition(record, self._now())
        except GuardViolation as exc:
            log.warning("guard_violation", status=record.status.value, guard=exc.guard.value)
            raise
        except WorkflowError as exc:
            log.error("illegal_transition", status=record.status.value, error=str(exc))
            raise

        if _same_state(record, updated):
            log.info("transition_noop", status=record.status.value)
            return record

        try:
            saved = await self._repo.save(updated)
        except SlotTakenError as exc:
            log.warning("guard_violation", guard=Guard.TECHNICIAN_UNAVAILABLE.value)
            raise GuardViolation(Guard.TECHNICIAN_UNAVAILABLE) from exc

        log.info(
            "transition_applied",
            from_status=record.status.value,
            to_status=saved.status.value,
            version=saved.version,
        )
        return saved


def _sync(fn: Callable[[MaintenanceRecord, datetime], MaintenanceRecord]) -> Transition:
    """Adapta una transición síncrona a la firma async de _apply."""

    async def transition(record: MaintenanceRecord, now: datetime) -> MaintenanceRecord:
        return fn(record, now)

    return transition


def _same_state(before: MaintenanceRecord, after: MaintenanceRecord) -> bool:
    """True si la transición no cambió nada observable (operaciones idempotentes)."""
    return before.model_dump(exclude={"updated_at"}) == after.model_dump(exclude={"updated_at"})
