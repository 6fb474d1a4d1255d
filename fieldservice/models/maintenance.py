from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fieldservice.models.enums import (
    TERMINAL_STATUSES,
    DeviceProgressStatus,
    MaintenanceStatus,
    MaintenanceType,
    Shift,
    WorkAction,
)


class GeoLocation(BaseModel):
    latitude: float
    longitude: float


class ActionLogEntry(BaseModel):
    """Acción del técnico en campo (start/pause/resume/end)."""

    action: WorkAction
    timestamp: datetime
    reason: str | None = None  # solo en pausas
    geolocation: GeoLocation | None = None


class DeviceProgress(BaseModel):
    """Progreso de un equipo dentro del mantenimiento."""

    client_device_id: int
    description: str | None = None
    completed_indices: list[int] = Field(default_factory=list)
    items_total: int | None = None
    progress_pct: float = 0.0
    progress_status: DeviceProgressStatus = DeviceProgressStatus.PENDING


class PaymentLedger(BaseModel):
    """Cotización y pago de un mantenimiento.

    is_paid:
    - None  → no requiere pago
    - False → cotización enviada, pago pendiente (o soporte rechazado)
    - True  → pago verificado por el coordinador
    """

    is_paid: bool | None = None
    value: Decimal | None = None
    price_support_ref: str | None = None  # PDF de la cotización
    payment_support_ref: str | None = None  # soporte de pago subido por el cliente

    @property
    def is_settled(self) -> bool:
        """True si el pago no bloquea la asignación (no requerido o verificado)."""
        return self.is_paid is not False


class ConfirmationTracker(BaseModel):
    """Confirmación de la visita por parte del cliente."""

    confirmation_required: bool = False
    confirmed_at: datetime | None = None
    confirmation_deadline: datetime | None = None
    coordinator_notified: bool = False
    coordinator_notified_at: datetime | None = None
    coordinator_called: bool = False
    coordinator_called_at: datetime | None = None

    def is_overdue(self, now: datetime) -> bool:
        """Plazo vencido sin confirmación del cliente."""
        return (
            self.confirmation_required
            and self.confirmed_at is None
            and self.confirmation_deadline is not None
            and self.confirmation_deadline <= now
        )


class MaintenanceRecord(BaseModel):
    """Estado persistido de un mantenimiento."""

    id: int | None = Field(default=None, frozen=True)
    type: MaintenanceType = Field(frozen=True)
    status: MaintenanceStatus = MaintenanceStatus.PENDING
    client_id: int | None = None
    description: str | None = None
    spare_parts: str | None = None

    # Agenda (solo con técnico asignado)
    date_maintenance: date | None = None
    shift: Shift | None = None
    technician_id: int | None = None

    payment: PaymentLedger = Field(default_factory=PaymentLedger)
    confirmation: ConfirmationTracker = Field(default_factory=ConfirmationTracker)
    action_log: list[ActionLogEntry] = Field(default_factory=list)
    devices: list[DeviceProgress] = Field(default_factory=list)
    rejection_reason: str | None = None

    # Control de concurrencia optimista
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paused(self) -> bool:
        """True si la última acción del técnico fue una pausa."""
        return bool(self.action_log) and self.action_log[-1].action == WorkAction.PAUSE

    @property
    def all_devices_completed(self) -> bool:
        return all(d.progress_status == DeviceProgressStatus.COMPLETED for d in self.devices)


class ProgressSummary(BaseModel):
    """Progreso agregado de todos los equipos del mantenimiento."""

    total_devices: int
    avg_progress_pct: float
    all_completed: bool
