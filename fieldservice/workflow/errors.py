"""Errores del flujo de mantenimiento.

- GuardViolation: precondición no cumplida, corregible por el usuario.
- IllegalTransition: evento no válido para el estado actual (error de UI).
"""

from __future__ import annotations

from enum import StrEnum

from fieldservice.models.enums import MaintenanceEvent, MaintenanceStatus


class Guard(StrEnum):
    NON_POSITIVE_VALUE = "NonPositiveValue"
    MISSING_PRICE_SUPPORT = "MissingPriceSupport"
    MISSING_PAYMENT_SUPPORT = "MissingPaymentSupport"
    PAYMENT_NOT_PENDING = "PaymentNotPending"
    PAYMENT_PENDING = "PaymentPending"
    TECHNICIAN_UNAVAILABLE = "TechnicianUnavailable"
    DEVICES_INCOMPLETE = "DevicesIncomplete"
    UNKNOWN_DEVICE = "UnknownDevice"
    INVALID_PROGRESS = "InvalidProgress"
    WORK_ALREADY_PAUSED = "WorkAlreadyPaused"
    WORK_NOT_PAUSED = "WorkNotPaused"
    CONFIRMATION_NOT_REQUIRED = "ConfirmationNotRequired"


GUARD_MESSAGES: dict[Guard, str] = {
    Guard.NON_POSITIVE_VALUE: "El valor de la cotización debe ser mayor que 0",
    Guard.MISSING_PRICE_SUPPORT: "Debe adjuntar el PDF de la cotización",
    Guard.MISSING_PAYMENT_SUPPORT: "Debe adjuntar el soporte de pago",
    Guard.PAYMENT_NOT_PENDING: "El mantenimiento no tiene un pago pendiente",
    Guard.PAYMENT_PENDING: "El pago del mantenimiento aún no ha sido verificado",
    Guard.TECHNICIAN_UNAVAILABLE: "El técnico ya no está disponible para esa fecha y turno",
    Guard.DEVICES_INCOMPLETE: "Hay equipos con el mantenimiento sin completar",
    Guard.UNKNOWN_DEVICE: "El equipo no pertenece a este mantenimiento",
    Guard.INVALID_PROGRESS: "El progreso reportado no es válido",
    Guard.WORK_ALREADY_PAUSED: "El mantenimiento ya está pausado",
    Guard.WORK_NOT_PAUSED: "El mantenimiento no está pausado",
    Guard.CONFIRMATION_NOT_REQUIRED: "El mantenimiento no requiere confirmación del cliente",
}


class WorkflowError(Exception):
    """Base de los errores del flujo de mantenimiento."""


class GuardViolation(WorkflowError):
    """Una precondición de la transición no se cumple."""

    def __init__(self, guard: Guard, detail: str | None = None) -> None:
        self.guard = guard
        self.detail = detail
        self.message = GUARD_MESSAGES[guard]
        super().__init__(f"{self.message} ({detail})" if detail else self.message)


class IllegalTransition(WorkflowError):
    """El evento no está definido para el estado actual."""

    def __init__(self, status: MaintenanceStatus, event: MaintenanceEvent) -> None:
        self.status = status
        self.event = event
        super().__init__(f"Evento {event.value!r} no permitido en estado {status.value!r}")
