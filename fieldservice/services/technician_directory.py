"""Directorio de técnicos y cálculo de disponibilidad por fecha/turno."""

from __future__ import annotations

from datetime import date

import structlog
from pydantic import BaseModel

from fieldservice.models.enums import Availability, Shift
from fieldservice.models.technician import Technician
from fieldservice.persistence.repository import MaintenanceRepository
from fieldservice.persistence.technician_repository import TechnicianRepository

logger = structlog.get_logger()


class TechnicianSlot(BaseModel):
    """Técnico con su disponibilidad para un turno concreto (selector de la UI)."""

    technician: Technician
    availability: Availability


class TechnicianDirectory:
    """Resuelve la disponibilidad de los técnicos.

    La disponibilidad nunca se almacena: se deriva en cada consulta de
    - el estado del técnico (inactivo → absent),
    - las ausencias registradas (absent),
    - los mantenimientos activos en ese turno (busy).
    """

    def __init__(
        self,
        technicians: TechnicianRepository,
        maintenances: MaintenanceRepository,
    ) -> None:
        self._technicians = technicians
        self._maintenances = maintenances

    async def slots(
        self, day: date, shift: Shift, specialty: str | None = None
    ) -> list[TechnicianSlot]:
        """Todos los técnicos activos con su disponibilidad, en orden de directorio."""
        technicians = await self._technicians.list_technicians()
        if specialty:
            wanted = _normalize(specialty)
            technicians = [
                t for t in technicians if t.specialty and _normalize(t.specialty) == wanted
            ]

        absences = await self._technicians.list_absences(day)
        absent = {a.technician_id for a in absences if a.covers(day, shift)}
        busy = await self._maintenances.busy_technician_ids(day, shift)

        return [
            TechnicianSlot(technician=t, availability=_classify(t.id, absent, busy))
            for t in technicians
        ]

    async def list_available(
        self, day: date, shift: Shift, specialty: str | None = None
    ) -> list[int]:
        slots = await self.slots(day, shift, specialty)
        available = [s.technician.id for s in slots if s.availability == Availability.AVAILABLE]
        logger.info(
            "available_technicians_listed",
            date=day.isoformat(),
            shift=shift.value,
            specialty=specialty,
            count=len(available),
        )
        return available

    async def availability(
        self,
        technician_id: int,
        day: date,
        shift: Shift,
        exclude_maintenance_id: int | None = None,
    ) -> Availability:
        """Disponibilidad de un técnico. exclude_maintenance_id ignora la propia asignación."""
        technician = await self._technicians.get(technician_id)
        if technician is None or not technician.active:
            return Availability.ABSENT

        absences = await self._technicians.list_absences(day)
        absent = {a.technician_id for a in absences if a.covers(day, shift)}
        busy = await self._maintenances.busy_technician_ids(day, shift, exclude_maintenance_id)
        return _classify(technician_id, absent, busy)

    async def is_available(
        self,
        technician_id: int,
        day: date,
        shift: Shift,
        exclude_maintenance_id: int | None = None,
    ) -> bool:
        result = await self.availability(technician_id, day, shift, exclude_maintenance_id)
        return result == Availability.AVAILABLE


def _classify(technician_id: int, absent: set[int], busy: set[int]) -> Availability:
    if technician_id in absent:
        return Availability.ABSENT
    if technician_id in busy:
        return Availability.BUSY
    return Availability.AVAILABLE


def _normalize(name: str) -> str:
    """Normaliza una especialidad para comparación."""
    return name.strip().casefold()
