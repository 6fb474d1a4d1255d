"""Máquina de estados del ciclo de vida de un mantenimiento.

Todas las transiciones son funciones puras: reciben el record, validan estado
y guards, y devuelven una copia modificada. El record original nunca se toca,
así que una transición que falla (o que se cancela a mitad) no deja cambios
parciales.

Flujo principal:
    pending → quoted → (payment_uploaded ⇄ quoted) → [approved] → assigned
            → in_progress → completed

Cualquier estado no terminal puede pasar a cancelled.
"""

from __future__ import annotations

from datetime import date, datetime

from fieldservice.models.enums import (
    TERMINAL_STATUSES,
    DeviceProgressStatus,
    MaintenanceEvent,
    MaintenanceStatus,
    Shift,
    WorkAction,
)
from fieldservice.models.maintenance import (
    ActionLogEntry,
    GeoLocation,
    MaintenanceRecord,
)
from fieldservice.workflow import confirmation, devices, payment
from fieldservice.workflow.errors import Guard, GuardViolation, IllegalTransition
from fieldservice.workflow.payment import Amount

S = MaintenanceStatus
E = MaintenanceEvent

_NON_TERMINAL = frozenset(s for s in MaintenanceStatus if s not in TERMINAL_STATUSES)

# Estados desde los que cada evento es válido (tabla única de transiciones)
TRANSITIONS: dict[MaintenanceEvent, frozenset[MaintenanceStatus]] = {
    E.SUBMIT_QUOTATION: frozenset({S.PENDING}),
    E.MARK_NO_PAYMENT_REQUIRED: frozenset({S.PENDING}),
    E.EDIT_QUOTATION: frozenset({S.QUOTED, S.PAYMENT_UPLOADED}),
    E.UPLOAD_PAYMENT_PROOF: frozenset({S.QUOTED}),
    E.VERIFY_PAYMENT: frozenset({S.PAYMENT_UPLOADED}),
    E.APPROVE: frozenset({S.QUOTED}),
    E.REJECT: frozenset({S.PENDING, S.QUOTED, S.PAYMENT_UPLOADED, S.APPROVED}),
    E.ASSIGN_TECHNICIAN: frozenset({S.QUOTED, S.APPROVED}),
    E.START_WORK: frozenset({S.ASSIGNED}),
    E.PAUSE_WORK: frozenset({S.IN_PROGRESS}),
    E.RESUME_WORK: frozenset({S.IN_PROGRESS}),
    E.UPDATE_DEVICE_PROGRESS: frozenset({S.IN_PROGRESS}),
    E.COMPLETE_WORK: frozenset({S.IN_PROGRESS}),
    E.RESCHEDULE: frozenset({S.ASSIGNED, S.IN_PROGRESS}),
    E.CANCEL: _NON_TERMINAL,
    E.REQUEST_CONFIRMATION: frozenset({S.ASSIGNED}),
    E.CONFIRM_BY_CLIENT: frozenset({S.ASSIGNED, S.IN_PROGRESS}),
    E.NOTIFY_COORDINATOR: frozenset({S.ASSIGNED, S.IN_PROGRESS}),
    E.MARK_COORDINATOR_CALLED: frozenset({S.ASSIGNED, S.IN_PROGRESS}),
}


def available_events(record: MaintenanceRecord) -> list[MaintenanceEvent]:
    """Eventos que la UI puede ofrecer para el estado actual del record."""
    return [event for event, sources in TRANSITIONS.items() if record.status in sources]


def ensure_allowed(record: MaintenanceRecord, event: MaintenanceEvent) -> None:
    """Lanza IllegalTransition si el evento no es válido en el estado actual."""
    if record.status not in TRANSITIONS[event]:
        raise IllegalTransition(record.status, event)


def begin(record: MaintenanceRecord, event: MaintenanceEvent) -> MaintenanceRecord:
    """Valida que el evento es legal y devuelve una copia profunda para modificar."""
    ensure_allowed(record, event)
    return record.model_copy(deep=True)


def _touch(record: MaintenanceRecord, now: datetime) -> MaintenanceRecord:
    record.updated_at = now
    return record


# ── Cotización y pago ───────────────────────────────────────────


def submit_quotation(
    record: MaintenanceRecord, value: Amount, price_support_ref: str, *, now: datetime
) -> MaintenanceRecord:
    updated = begin(record, E.SUBMIT_QUOTATION)
    updated.payment = payment.quote(updated.payment, value, price_support_ref)
    updated.status = S.QUOTED
    return _touch(updated, now)


def mark_no_payment_required(record: MaintenanceRecord, *, now: datetime) -> MaintenanceRecord:
    updated = begin(record, E.MARK_NO_PAYMENT_REQUIRED)
    updated.payment = payment.no_payment_required(updated.payment)
    updated.status = S.QUOTED
    return _touch(updated, now)


def edit_quotation(
    record: MaintenanceRecord,
    value: Amount,
    price_support_ref: str | None = None,
    *,
    now: datetime,
) -> MaintenanceRecord:
    updated = begin(record, E.EDIT_QUOTATION)
    updated.payment = payment.edit(updated.payment, value, price_support_ref)
    return _touch(updated, now)


def upload_payment_proof(
    record: MaintenanceRecord, payment_support_ref: str, *, now: datetime
) -> MaintenanceRecord:
    updated = begin(record, E.UPLOAD_PAYMENT_PROOF)
    updated.payment = payment.attach_proof(updated.payment, payment_support_ref)
    updated.status = S.PAYMENT_UPLOADED
    return _touch(updated, now)


def verify_payment(record: MaintenanceRecord, accepted: bool, *, now: datetime) -> MaintenanceRecord:
    """Aceptado → quoted con is_paid=True; rechazado → quoted esperando nuevo soporte."""
    updated = begin(record, E.VERIFY_PAYMENT)
    updated.payment = payment.verify(updated.payment, accepted)
    updated.status = S.QUOTED
    return _touch(updated, now)


def approve(record: MaintenanceRecord, *, now: datetime) -> MaintenanceRecord:
    updated = begin(record, E.APPROVE)
    if not updated.payment.is_settled:
        raise GuardViolation(Guard.PAYMENT_PENDING)
    updated.status = S.APPROVED
    return _touch(updated, now)


def reject(record: MaintenanceRecord, reason: str | None = None, *, now: datetime) -> MaintenanceRecord:
    updated = begin(record, E.REJECT)
    updated.status = S.REJECTED
    updated.rejection_reason = reason
    return _touch(updated, now)


# ── Asignación ──────────────────────────────────────────────────


def assign_technician(
    record: MaintenanceRecord,
    technician_id: int,
    day: date,
    shift: Shift,
    *,
    available: bool,
    now: datetime,
) -> MaintenanceRecord:
    """Asigna técnico, fecha y turno.

    `available` debe calcularse dentro de la misma unidad atómica que la
    escritura (ver MaintenanceWorkflow.assign_technician).
    """
    updated = begin(record, E.ASSIGN_TECHNICIAN)
    if not updated.payment.is_settled:
        raise GuardViolation(Guard.PAYMENT_PENDING)
    if not available:
        raise GuardViolation(
            Guard.TECHNICIAN_UNAVAILABLE,
            detail=f"técnico={technician_id} fecha={day.isoformat()} turno={shift.value}",
        )
    updated.technician_id = technician_id
    updated.date_maintenance = day
    updated.shift = shift
    updated.status = S.ASSIGNED
    return _touch(updated, now)


# ── Ejecución en campo ──────────────────────────────────────────


def start_work(
    record: MaintenanceRecord, *, geolocation: GeoLocation | None = None, now: datetime
) -> MaintenanceRecord:
    updated = begin(record, E.START_WORK)
    updated.action_log.append(
        ActionLogEntry(action=WorkAction.START, timestamp=now, geolocation=geolocation)
    )
    updated.status = S.IN_PROGRESS
    return _touch(updated, now)


def pause_work(
    record: MaintenanceRecord,
    reason: str | None = None,
    *,
    geolocation: GeoLocation | None = None,
    now: datetime,
) -> MaintenanceRecord:
    updated = begin(record, E.PAUSE_WORK)
    if updated.is_paused:
        raise GuardViolation(Guard.WORK_ALREADY_PAUSED)
    updated.action_log.append(
        ActionLogEntry(action=WorkAction.PAUSE, timestamp=now, reason=reason, geolocation=geolocation)
    )
    return _touch(updated, now)


def resume_work(
    record: MaintenanceRecord, *, geolocation: GeoLocation | None = None, now: datetime
) -> MaintenanceRecord:
    updated = begin(record, E.RESUME_WORK)
    if not updated.is_paused:
        raise GuardViolation(Guard.WORK_NOT_PAUSED)
    updated.action_log.append(
        ActionLogEntry(action=WorkAction.RESUME, timestamp=now, geolocation=geolocation)
    )
    return _touch(updated, now)


def update_device_progress(
    record: MaintenanceRecord,
    client_device_id: int,
    completed_indices: list[int],
    items_total: int | None = None,
    *,
    now: datetime,
) -> MaintenanceRecord:
    updated = begin(record, E.UPDATE_DEVICE_PROGRESS)
    updated.devices = devices.apply_progress(
        updated.devices, client_device_id, completed_indices, items_total
    )
    return _touch(updated, now)


def complete_work(
    record: MaintenanceRecord,
    *,
    devices_completed: bool,
    geolocation: GeoLocation | None = None,
    now: datetime,
) -> MaintenanceRecord:
    """Cierra el mantenimiento. Requiere que todos los equipos estén completos."""
    updated = begin(record, E.COMPLETE_WORK)
    if not devices_completed:
        pending = [
            str(d.client_device_id) for d in updated.devices
            if d.progress_status != DeviceProgressStatus.COMPLETED
        ]
        raise GuardViolation(
            Guard.DEVICES_INCOMPLETE,
            detail=f"equipos pendientes: {', '.join(pending)}" if pending else None,
        )
    updated.action_log.append(
        ActionLogEntry(action=WorkAction.END, timestamp=now, geolocation=geolocation)
    )
    updated.status = S.COMPLETED
    return _touch(updated, now)


# ── Confirmación del cliente ────────────────────────────────────


def request_confirmation(
    record: MaintenanceRecord, deadline: datetime, *, now: datetime
) -> MaintenanceRecord:
    updated = begin(record, E.REQUEST_CONFIRMATION)
    updated.confirmation = confirmation.require(updated.confirmation, deadline)
    return _touch(updated, now)


def confirm_by_client(record: MaintenanceRecord, *, now: datetime) -> MaintenanceRecord:
    updated = begin(record, E.CONFIRM_BY_CLIENT)
    updated.confirmation = confirmation.confirm(updated.confirmation, now)
    return _touch(updated, now)


def notify_coordinator_if_overdue(record: MaintenanceRecord, *, now: datetime) -> MaintenanceRecord:
    updated = begin(record, E.NOTIFY_COORDINATOR)
    updated.confirmation = confirmation.notify_if_overdue(updated.confirmation, now)
    return _touch(updated, now)


def mark_coordinator_called(record: MaintenanceRecord, *, now: datetime) -> MaintenanceRecord:
    updated = begin(record, E.MARK_COORDINATOR_CALLED)
    updated.confirmation = confirmation.mark_called(updated.confirmation, now)
    return _touch(updated, now)
