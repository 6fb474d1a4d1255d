"""Reagendamiento y cancelación de mantenimientos."""

from __future__ import annotations

from datetime import date, datetime

from fieldservice.models.enums import MaintenanceEvent, MaintenanceStatus, Shift
from fieldservice.models.maintenance import ConfirmationTracker, MaintenanceRecord
from fieldservice.workflow import confirmation
from fieldservice.workflow.errors import Guard, GuardViolation
from fieldservice.workflow.state_machine import begin


def reschedule(
    record: MaintenanceRecord,
    day: date,
    shift: Shift,
    technician_id: int | None = None,
    *,
    available: bool,
    confirmation_deadline: datetime | None = None,
    now: datetime,
) -> MaintenanceRecord:
    """Mueve la visita a otra fecha/turno y opcionalmente a otro técnico.

    El status no cambia. `available` se refiere al técnico destino (el nuevo,
    o el actual si no se indica otro) en el nuevo turno; el turno anterior
    queda libre solo, porque la disponibilidad se deriva de las asignaciones.

    Reagendar al mismo técnico, fecha y turno no cambia nada.
    """
    updated = begin(record, MaintenanceEvent.RESCHEDULE)
    target = technician_id if technician_id is not None else updated.technician_id
    if (target, day, shift) == (record.technician_id, record.date_maintenance, record.shift):
        return record
    if not available:
        raise GuardViolation(
            Guard.TECHNICIAN_UNAVAILABLE,
            detail=f"técnico={target} fecha={day.isoformat()} turno={shift.value}",
        )
    updated.technician_id = target
    updated.date_maintenance = day
    updated.shift = shift
    updated.confirmation = confirmation.restart(updated.confirmation, confirmation_deadline)
    updated.updated_at = now
    return updated


def cancel(record: MaintenanceRecord, *, now: datetime) -> MaintenanceRecord:
    """Cancela el mantenimiento (sin vuelta atrás) y libera técnico y agenda."""
    updated = begin(record, MaintenanceEvent.CANCEL)
    updated.status = MaintenanceStatus.CANCELLED
    updated.technician_id = None
    updated.date_maintenance = None
    updated.shift = None
    updated.confirmation = ConfirmationTracker()
    updated.updated_at = now
    return updated
