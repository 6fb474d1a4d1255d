"""Cliente async para la API REST del backend de mantenimientos.

Implementa los contratos de colaborador que consume el flujo:
- directorio de técnicos (list_available / is_available)
- progreso de ejecución (all_devices_completed)
"""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
import structlog

from fieldservice.models.enums import Availability, DeviceProgressStatus, Shift

logger = structlog.get_logger()

# Valores de "disponibilidad" que devuelve el backend
_AVAILABILITY_LABELS: dict[str, Availability] = {
    "disponible": Availability.AVAILABLE,
    "ocupado": Availability.BUSY,
    "ausente": Availability.ABSENT,
}


class FieldApiError(Exception):
    """Error al comunicarse con la API del backend."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FieldApiClient:
    """Cliente async para la API del backend.

    Uso como context manager async:
        async with FieldApiClient(base_url="https://api...", token="...") as api:
            ids = await api.list_available(date(2024, 6, 1), Shift.AM)
    """

    def __init__(self, base_url: str, token: str | None = None) -> None:
        self._base_url = base_url
        self._token = token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> FieldApiClient:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(30.0),
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()

    # ── Directorio de técnicos ──────────────────────────────────

    async def technician_availability(
        self, day: date, shift: Shift, specialty: str | None = None
    ) -> list[tuple[int, Availability]]:
        """Técnicos con su disponibilidad para la fecha/turno, en el orden del backend."""
        params = {"date": day.isoformat(), "shift": shift.value}
        if specialty:
            params["specialty"] = specialty

        data = await self._get("/api/availableTechnicians", params=params)
        result = []
        for item in data:
            label = str(item.get("disponibilidad", "")).casefold()
            availability = _AVAILABILITY_LABELS.get(label)
            if availability is None:
                logger.warning(
                    "unknown_availability_label", technician_id=item.get("id"), label=label
                )
                availability = Availability.BUSY
            result.append((int(item["id"]), availability))
        return result

    async def list_available(
        self, day: date, shift: Shift, specialty: str | None = None
    ) -> list[int]:
        slots = await self.technician_availability(day, shift, specialty)
        return [tech_id for tech_id, a in slots if a == Availability.AVAILABLE]

    async def is_available(
        self,
        technician_id: int,
        day: date,
        shift: Shift,
        exclude_maintenance_id: int | None = None,
    ) -> bool:
        params: dict[str, Any] = {"date": day.isoformat(), "shift": shift.value}
        if exclude_maintenance_id is not None:
            params["exclude_maintenance_id"] = exclude_maintenance_id

        data = await self._get(f"/api/technical/{technician_id}/availability", params=params)
        label = str(data.get("disponibilidad", "")).casefold()
        return _AVAILABILITY_LABELS.get(label) == Availability.AVAILABLE

    # ── Progreso de ejecución ───────────────────────────────────

    async def all_devices_completed(self, maintenance_id: int) -> bool:
        data = await self._get(f"/api/technicianMaintenances/{maintenance_id}/progress")

        summary = data.get("global")
        if summary and "all_completed" in summary:
            return bool(summary["all_completed"])

        # Sin resumen global: agregamos a partir de cada equipo
        devices = data.get("devices", [])
        return all(
            d.get("progress_status") == DeviceProgressStatus.COMPLETED.value for d in devices
        )

    # ── Internals ───────────────────────────────────────────────

    async def _get(self, path: str, **kwargs: Any) -> Any:
        """GET a la API. Devuelve el campo `data` de la respuesta estándar."""
        assert self._client is not None, "Usar como context manager: async with FieldApiClient(...)"

        try:
            response = await self._client.get(path, **kwargs)
        except httpx.HTTPError as exc:
            raise FieldApiError(f"Backend no disponible: {exc}") from exc

        if response.status_code >= 400:
            raise FieldApiError(
                f"Backend HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        body = response.json()
        if not body.get("success", False):
            raise FieldApiError(
                f"Backend error: {body.get('message', 'unknown_error')}",
                status_code=response.status_code,
            )
        return body.get("data")
