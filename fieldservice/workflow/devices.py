"""Progreso por equipo y regla de agregación para completar el mantenimiento."""

from __future__ import annotations

from fieldservice.models.enums import DeviceProgressStatus
from fieldservice.models.maintenance import DeviceProgress, ProgressSummary
from fieldservice.workflow.errors import Guard, GuardViolation


def apply_progress(
    devices: list[DeviceProgress],
    client_device_id: int,
    completed_indices: list[int],
    items_total: int | None = None,
) -> list[DeviceProgress]:
    """Devuelve una nueva lista de equipos con el progreso de uno actualizado.

    items_total es opcional si el equipo ya tiene un total registrado.
    """
    index = next(
        (i for i, d in enumerate(devices) if d.client_device_id == client_device_id), None
    )
    if index is None:
        raise GuardViolation(Guard.UNKNOWN_DEVICE, detail=f"client_device_id={client_device_id}")

    device = devices[index]
    total = items_total if items_total is not None else device.items_total
    if total is None or total <= 0:
        raise GuardViolation(Guard.INVALID_PROGRESS, detail="items_total requerido")

    indices = sorted(set(completed_indices))
    if any(i < 0 or i >= total for i in indices):
        raise GuardViolation(Guard.INVALID_PROGRESS, detail=f"índices fuera de rango (0..{total - 1})")

    updated = device.model_copy(
        update={
            "completed_indices": indices,
            "items_total": total,
            "progress_pct": round(len(indices) * 100 / total, 2),
            "progress_status": _status_for(len(indices), total),
        }
    )
    return [*devices[:index], updated, *devices[index + 1:]]


def summarize(devices: list[DeviceProgress]) -> ProgressSummary:
    if not devices:
        return ProgressSummary(total_devices=0, avg_progress_pct=0.0, all_completed=True)
    return ProgressSummary(
        total_devices=len(devices),
        avg_progress_pct=round(sum(d.progress_pct for d in devices) / len(devices), 2),
        all_completed=all(d.progress_status == DeviceProgressStatus.COMPLETED for d in devices),
    )


def _status_for(done: int, total: int) -> DeviceProgressStatus:
    if done >= total:
        return DeviceProgressStatus.COMPLETED
    if done > 0:
        return DeviceProgressStatus.IN_PROGRESS
    return DeviceProgressStatus.PENDING
