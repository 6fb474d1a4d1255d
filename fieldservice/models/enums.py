from enum import StrEnum


class MaintenanceStatus(StrEnum):
    PENDING = "pending"
    QUOTED = "quoted"
    PAYMENT_UPLOADED = "payment_uploaded"
    APPROVED = "approved"
    REJECTED = "rejected"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[MaintenanceStatus] = frozenset(
    {MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED, MaintenanceStatus.REJECTED}
)

# Estados en los que el técnico ocupa su turno (cuentan para disponibilidad)
SLOT_HOLDING_STATUSES: frozenset[MaintenanceStatus] = frozenset(
    {MaintenanceStatus.ASSIGNED, MaintenanceStatus.IN_PROGRESS}
)


class MaintenanceType(StrEnum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"


class Shift(StrEnum):
    AM = "AM"
    PM = "PM"


class MaintenanceEvent(StrEnum):
    SUBMIT_QUOTATION = "submit_quotation"
    MARK_NO_PAYMENT_REQUIRED = "mark_no_payment_required"
    EDIT_QUOTATION = "edit_quotation"
    UPLOAD_PAYMENT_PROOF = "upload_payment_proof"
    VERIFY_PAYMENT = "verify_payment"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN_TECHNICIAN = "assign_technician"
    START_WORK = "start_work"
    PAUSE_WORK = "pause_work"
    RESUME_WORK = "resume_work"
    UPDATE_DEVICE_PROGRESS = "update_device_progress"
    COMPLETE_WORK = "complete_work"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    REQUEST_CONFIRMATION = "request_confirmation"
    CONFIRM_BY_CLIENT = "confirm_by_client"
    NOTIFY_COORDINATOR = "notify_coordinator"
    MARK_COORDINATOR_CALLED = "mark_coordinator_called"


class WorkAction(StrEnum):
    """Acciones del técnico en campo registradas en el action log."""

    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    END = "end"


class DeviceProgressStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Availability(StrEnum):
    AVAILABLE = "available"
    BUSY = "busy"
    ABSENT = "absent"


class ContractType(StrEnum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACTOR = "contractor"
