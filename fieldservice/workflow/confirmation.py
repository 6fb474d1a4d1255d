"""Reglas de confirmación de visitas (Confirmation Tracker).

Independiente del status: ninguna de estas funciones cambia el estado del
mantenimiento. El vencimiento del plazo lo detecta un scheduler externo
(ver fieldservice.scheduler.confirmation_job).
"""

from __future__ import annotations

from datetime import datetime

from fieldservice.models.maintenance import ConfirmationTracker
from fieldservice.workflow.errors import Guard, GuardViolation


def require(tracker: ConfirmationTracker, deadline: datetime) -> ConfirmationTracker:
    """Activa la confirmación con un plazo nuevo. Descarta el seguimiento anterior."""
    return ConfirmationTracker(confirmation_required=True, confirmation_deadline=deadline)


def confirm(tracker: ConfirmationTracker, now: datetime) -> ConfirmationTracker:
    """Confirmación del cliente. Solo la primera cuenta; las siguientes no hacen nada."""
    if not tracker.confirmation_required:
        raise GuardViolation(Guard.CONFIRMATION_NOT_REQUIRED)
    if tracker.confirmed_at is not None:
        return tracker
    return tracker.model_copy(update={"confirmed_at": now})


def notify_if_overdue(tracker: ConfirmationTracker, now: datetime) -> ConfirmationTracker:
    """Marca al coordinador como notificado si el plazo venció sin confirmación."""
    if tracker.coordinator_notified or not tracker.is_overdue(now):
        return tracker
    return tracker.model_copy(
        update={"coordinator_notified": True, "coordinator_notified_at": now}
    )


def mark_called(tracker: ConfirmationTracker, now: datetime) -> ConfirmationTracker:
    if not tracker.confirmation_required:
        raise GuardViolation(Guard.CONFIRMATION_NOT_REQUIRED)
    return tracker.model_copy(update={"coordinator_called": True, "coordinator_called_at": now})


def restart(tracker: ConfirmationTracker, deadline: datetime | None) -> ConfirmationTracker:
    """Ajusta el seguimiento tras un reagendamiento.

    confirmed_at y la llamada del coordinador se conservan: la confirmación
    del cliente solo se registra una vez. Un plazo nuevo reabre la
    notificación al coordinador, que se refería al plazo anterior.
    """
    if not tracker.confirmation_required or deadline is None:
        return tracker
    return tracker.model_copy(
        update={
            "confirmation_deadline": deadline,
            "coordinator_notified": False,
            "coordinator_notified_at": None,
        }
    )
