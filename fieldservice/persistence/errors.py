class RecordNotFoundError(Exception):
    """No existe un mantenimiento con ese id."""

    def __init__(self, maintenance_id: int) -> None:
        self.maintenance_id = maintenance_id
        super().__init__(f"Mantenimiento no encontrado: {maintenance_id}")


class ConflictError(Exception):
    """El record cambió en BD desde que se leyó (version distinta)."""

    def __init__(self, maintenance_id: int, expected_version: int) -> None:
        self.maintenance_id = maintenance_id
        self.expected_version = expected_version
        super().__init__(
            f"Conflicto de concurrencia en mantenimiento {maintenance_id} "
            f"(version esperada {expected_version})"
        )


class SlotTakenError(Exception):
    """Otro mantenimiento activo ya ocupa ese técnico/fecha/turno."""
