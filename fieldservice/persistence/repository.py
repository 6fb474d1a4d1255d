import json
import sqlite3
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import aiosqlite
import structlog

from fieldservice.models.enums import (
    SLOT_HOLDING_STATUSES,
    DeviceProgressStatus,
    MaintenanceStatus,
    MaintenanceType,
    Shift,
    WorkAction,
)
from fieldservice.models.maintenance import (
    ActionLogEntry,
    ConfirmationTracker,
    DeviceProgress,
    GeoLocation,
    MaintenanceRecord,
    PaymentLedger,
)
from fieldservice.persistence.errors import ConflictError, RecordNotFoundError, SlotTakenError

logger = structlog.get_logger()

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

_UNASSIGNED_STATUSES = (MaintenanceStatus.QUOTED, MaintenanceStatus.APPROVED)


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: date | datetime | None) -> str | None:
    """ISO 8601. Los datetime con zona se guardan en UTC para que comparen bien como texto."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.isoformat() if value else None


def _is_paid(value: int | None) -> bool | None:
    return None if value is None else bool(value)


class MaintenanceRepository:
    """Persistencia de mantenimientos en SQLite con control de versión optimista."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    async def initialize(self) -> None:
        """Crea las tablas si no existen."""
        async with aiosqlite.connect(self._db_path) as db:
            schema = SCHEMA_PATH.read_text()
            await db.executescript(schema)
            await db.commit()
        logger.info("database_initialized", path=str(self._db_path))

    # ── Lectura ─────────────────────────────────────────────────

    async def _load_devices(
        self, db: aiosqlite.Connection, maintenance_id: int
    ) -> list[DeviceProgress]:
        cursor = await db.execute(
            "SELECT * FROM maintenance_devices WHERE maintenance_id = ? ORDER BY rowid",
            (maintenance_id,),
        )
        rows = await cursor.fetchall()
        return [
            DeviceProgress(
                client_device_id=r["client_device_id"],
                description=r["description"],
                completed_indices=json.loads(r["completed_indices"]),
                items_total=r["items_total"],
                progress_pct=r["progress_pct"],
                progress_status=DeviceProgressStatus(r["progress_status"]),
            )
            for r in rows
        ]

    async def _load_actions(
        self, db: aiosqlite.Connection, maintenance_id: int
    ) -> list[ActionLogEntry]:
        cursor = await db.execute(
            "SELECT * FROM maintenance_actions WHERE maintenance_id = ? ORDER BY seq",
            (maintenance_id,),
        )
        rows = await cursor.fetchall()
        return [
            ActionLogEntry(
                action=WorkAction(a["action"]),
                timestamp=datetime.fromisoformat(a["timestamp"]),
                reason=a["reason"],
                geolocation=(
                    GeoLocation(latitude=a["latitude"], longitude=a["longitude"])
                    if a["latitude"] is not None
                    else None
                ),
            )
            for a in rows
        ]

    def _row_to_record(self, row: aiosqlite.Row) -> MaintenanceRecord:
        return MaintenanceRecord(
            id=row["id"],
            type=MaintenanceType(row["type"]),
            status=MaintenanceStatus(row["status"]),
            client_id=row["client_id"],
            description=row["description"],
            spare_parts=row["spare_parts"],
            date_maintenance=date.fromisoformat(row["date_maintenance"]) if row["date_maintenance"] else None,
            shift=Shift(row["shift"]) if row["shift"] else None,
            technician_id=row["technician_id"],
            payment=PaymentLedger(
                is_paid=_is_paid(row["is_paid"]),
                value=Decimal(row["value"]) if row["value"] is not None else None,
                price_support_ref=row["price_support_ref"],
                payment_support_ref=row["payment_support_ref"],
            ),
            confirmation=ConfirmationTracker(
                confirmation_required=bool(row["confirmation_required"]),
                confirmed_at=_dt(row["confirmed_at"]),
                confirmation_deadline=_dt(row["confirmation_deadline"]),
                coordinator_notified=bool(row["coordinator_notified"]),
                coordinator_notified_at=_dt(row["coordinator_notified_at"]),
                coordinator_called=bool(row["coordinator_called"]),
                coordinator_called_at=_dt(row["coordinator_called_at"]),
            ),
            rejection_reason=row["rejection_reason"],
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _hydrate(self, db: aiosqlite.Connection, row: aiosqlite.Row) -> MaintenanceRecord:
        record = self._row_to_record(row)
        record.devices = await self._load_devices(db, row["id"])
        record.action_log = await self._load_actions(db, row["id"])
        return record

    async def _select(self, where: str, params: tuple) -> list[MaintenanceRecord]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT * FROM maintenances WHERE {where} ORDER BY created_at, id", params
            )
            rows = await cursor.fetchall()
            return [await self._hydrate(db, row) for row in rows]

    async def load(self, maintenance_id: int) -> MaintenanceRecord:
        """Carga un mantenimiento completo (equipos y action log incluidos).

        Raises:
            RecordNotFoundError: si el id no existe.
        """
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM maintenances WHERE id = ?", (maintenance_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise RecordNotFoundError(maintenance_id)
            return await self._hydrate(db, row)

    async def list_by_status(self, *statuses: MaintenanceStatus) -> list[MaintenanceRecord]:
        placeholders = ", ".join("?" for _ in statuses)
        return await self._select(
            f"status IN ({placeholders})", tuple(s.value for s in statuses)
        )

    async def list_unassigned(self) -> list[MaintenanceRecord]:
        """Mantenimientos listos para asignar técnico (pago no requerido o verificado)."""
        return await self._select(
            "status IN (?, ?) AND (is_paid IS NULL OR is_paid = 1)",
            tuple(s.value for s in _UNASSIGNED_STATUSES),
        )

    async def list_unconfirmed(self) -> list[MaintenanceRecord]:
        """Visitas agendadas que requieren confirmación y el cliente no ha confirmado."""
        return await self._select(
            "confirmation_required = 1 AND confirmed_at IS NULL AND status IN (?, ?)",
            tuple(s.value for s in SLOT_HOLDING_STATUSES),
        )

    async def list_overdue_confirmations(self, now: datetime) -> list[MaintenanceRecord]:
        """Sin confirmar, plazo vencido y coordinador aún no notificado."""
        return await self._select(
            """confirmation_required = 1 AND confirmed_at IS NULL
               AND coordinator_notified = 0
               AND confirmation_deadline IS NOT NULL AND confirmation_deadline <= ?
               AND status IN (?, ?)""",
            (_iso(now), *(s.value for s in SLOT_HOLDING_STATUSES)),
        )

    async def busy_technician_ids(
        self, day: date, shift: Shift, exclude_maintenance_id: int | None = None
    ) -> set[int]:
        """Técnicos con un mantenimiento activo en ese turno."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                """SELECT technician_id FROM maintenances
                   WHERE date_maintenance = ? AND shift = ?
                     AND technician_id IS NOT NULL
                     AND status IN (?, ?)
                     AND id != ?""",
                (
                    day.isoformat(),
                    shift.value,
                    *(s.value for s in SLOT_HOLDING_STATUSES),
                    exclude_maintenance_id if exclude_maintenance_id is not None else -1,
                ),
            )
            rows = await cursor.fetchall()
            return {r[0] for r in rows}

    # ── Escritura ───────────────────────────────────────────────

    async def create(self, record: MaintenanceRecord) -> MaintenanceRecord:
        """Inserta un nuevo mantenimiento con sus equipos. Devuelve el record con id."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                """INSERT INTO maintenances
                   (type, status, client_id, description, spare_parts,
                    version, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, 0, ?, ?)""",
                (
                    record.type.value,
                    record.status.value,
                    record.client_id,
                    record.description,
                    record.spare_parts,
                    _iso(record.created_at),
                    _iso(record.updated_at),
                ),
            )
            maintenance_id = cursor.lastrowid
            await self._write_devices(db, maintenance_id, record.devices)
            await db.commit()

        logger.info("maintenance_created", id=maintenance_id, type=record.type.value)
        return record.model_copy(update={"id": maintenance_id, "version": 0})

    async def save(self, record: MaintenanceRecord) -> MaintenanceRecord:
        """Guarda el record si su version coincide con la de BD.

        Todo se escribe en una única transacción: o se aplica completo o nada.

        Raises:
            ConflictError: otro escritor guardó antes (version distinta).
            SlotTakenError: el técnico ya tiene otro mantenimiento activo en ese turno.
            RecordNotFoundError: si el id no existe.
        """
        assert record.id is not None, "El record debe tener id antes de guardarlo"

        async with aiosqlite.connect(self._db_path) as db:
            try:
                cursor = await db.execute(
                    """UPDATE maintenances SET
                        status = ?, description = ?, spare_parts = ?,
                        date_maintenance = ?, shift = ?, technician_id = ?,
                        is_paid = ?, value = ?, price_support_ref = ?, payment_support_ref = ?,
                        confirmation_required = ?, confirmed_at = ?, confirmation_deadline = ?,
                        coordinator_notified = ?, coordinator_notified_at = ?,
                        coordinator_called = ?, coordinator_called_at = ?,
                        rejection_reason = ?, updated_at = ?,
                        version = version + 1
                       WHERE id = ? AND version = ?""",
                    (
                        record.status.value,
                        record.description,
                        record.spare_parts,
                        _iso(record.date_maintenance),
                        record.shift.value if record.shift else None,
                        record.technician_id,
                        None if record.payment.is_paid is None else int(record.payment.is_paid),
                        str(record.payment.value) if record.payment.value is not None else None,
                        record.payment.price_support_ref,
                        record.payment.payment_support_ref,
                        int(record.confirmation.confirmation_required),
                        _iso(record.confirmation.confirmed_at),
                        _iso(record.confirmation.confirmation_deadline),
                        int(record.confirmation.coordinator_notified),
                        _iso(record.confirmation.coordinator_notified_at),
                        int(record.confirmation.coordinator_called),
                        _iso(record.confirmation.coordinator_called_at),
                        record.rejection_reason,
                        _iso(record.updated_at),
                        record.id,
                        record.version,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                logger.warning(
                    "technician_slot_taken",
                    id=record.id,
                    technician_id=record.technician_id,
                    date=_iso(record.date_maintenance),
                    shift=record.shift.value if record.shift else None,
                )
                raise SlotTakenError(str(exc)) from exc

            if cursor.rowcount == 0:
                exists = await db.execute("SELECT 1 FROM maintenances WHERE id = ?", (record.id,))
                if await exists.fetchone() is None:
                    raise RecordNotFoundError(record.id)
                raise ConflictError(record.id, record.version)

            await self._write_devices(db, record.id, record.devices)
            await self._append_actions(db, record.id, record.action_log)
            await db.commit()

        return record.model_copy(update={"version": record.version + 1})

    async def _write_devices(
        self, db: aiosqlite.Connection, maintenance_id: int, devices: list[DeviceProgress]
    ) -> None:
        for device in devices:
            await db.execute(
                """INSERT INTO maintenance_devices
                   (maintenance_id, client_device_id, description, completed_indices,
                    items_total, progress_pct, progress_status)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(maintenance_id, client_device_id) DO UPDATE SET
                    description = excluded.description,
                    completed_indices = excluded.completed_indices,
                    items_total = excluded.items_total,
                    progress_pct = excluded.progress_pct,
                    progress_status = excluded.progress_status""",
                (
                    maintenance_id,
                    device.client_device_id,
                    device.description,
                    json.dumps(device.completed_indices),
                    device.items_total,
                    device.progress_pct,
                    device.progress_status.value,
                ),
            )

    async def _append_actions(
        self, db: aiosqlite.Connection, maintenance_id: int, actions: list[ActionLogEntry]
    ) -> None:
        """El action log es append-only: solo se insertan las entradas nuevas."""
        cursor = await db.execute(
            "SELECT COUNT(*) FROM maintenance_actions WHERE maintenance_id = ?",
            (maintenance_id,),
        )
        (stored,) = await cursor.fetchone()
        for seq, entry in enumerate(actions[stored:], start=stored):
            await db.execute(
                """INSERT INTO maintenance_actions
                   (maintenance_id, seq, action, timestamp, reason, latitude, longitude)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    maintenance_id,
                    seq,
                    entry.action.value,
                    _iso(entry.timestamp),
                    entry.reason,
                    entry.geolocation.latitude if entry.geolocation else None,
                    entry.geolocation.longitude if entry.geolocation else None,
                ),
            )
