from datetime import date

from pydantic import BaseModel

from fieldservice.models.enums import ContractType, Shift


class Technician(BaseModel):
    """Técnico de campo (directorio)."""

    id: int
    name: str
    document: str | None = None
    phone: str | None = None
    specialty: str | None = None
    contract_type: ContractType = ContractType.FULL_TIME
    active: bool = True


class TechnicianAbsence(BaseModel):
    """Ausencia registrada (vacaciones, incapacidad...).

    shift=None significa que la ausencia cubre el día completo.
    """

    technician_id: int
    absence_date: date
    shift: Shift | None = None
    reason: str | None = None

    def covers(self, day: date, shift: Shift) -> bool:
        return self.absence_date == day and (self.shift is None or self.shift == shift)
