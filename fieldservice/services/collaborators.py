"""Contratos de los colaboradores externos del flujo de mantenimiento."""

from __future__ import annotations

from datetime import date
from typing import Protocol

from fieldservice.models.enums import Shift


class TechnicianAvailability(Protocol):
    """Directorio de técnicos: disponibilidad derivada por fecha y turno."""

    async def list_available(
        self, day: date, shift: Shift, specialty: str | None = None
    ) -> list[int]: ...

    async def is_available(
        self,
        technician_id: int,
        day: date,
        shift: Shift,
        exclude_maintenance_id: int | None = None,
    ) -> bool: ...


class DeviceProgressSource(Protocol):
    """Seguimiento de ejecución: ¿todos los equipos del mantenimiento están completos?"""

    async def all_devices_completed(self, maintenance_id: int) -> bool: ...
