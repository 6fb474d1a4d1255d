from datetime import date
from pathlib import Path

import aiosqlite
import structlog

from fieldservice.models.enums import ContractType, Shift
from fieldservice.models.technician import Technician, TechnicianAbsence

logger = structlog.get_logger()


class TechnicianRepository:
    """Técnicos y ausencias registradas (mismo fichero SQLite que los mantenimientos)."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    def _row_to_technician(self, row: aiosqlite.Row) -> Technician:
        return Technician(
            id=row["id"],
            name=row["name"],
            document=row["document"],
            phone=row["phone"],
            specialty=row["specialty"],
            contract_type=ContractType(row["contract_type"]),
            active=bool(row["active"]),
        )

    async def list_technicians(self, active_only: bool = True) -> list[Technician]:
        """Devuelve los técnicos en orden de directorio (por id)."""
        query = "SELECT * FROM technicians"
        if active_only:
            query += " WHERE active = 1"
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query + " ORDER BY id")
            rows = await cursor.fetchall()
            return [self._row_to_technician(r) for r in rows]

    async def get(self, technician_id: int) -> Technician | None:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM technicians WHERE id = ?", (technician_id,))
            row = await cursor.fetchone()
            return self._row_to_technician(row) if row else None

    async def upsert(self, technician: Technician) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT INTO technicians
                   (id, name, document, phone, specialty, contract_type, active)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    document = excluded.document,
                    phone = excluded.phone,
                    specialty = excluded.specialty,
                    contract_type = excluded.contract_type,
                    active = excluded.active""",
                (
                    technician.id,
                    technician.name,
                    technician.document,
                    technician.phone,
                    technician.specialty,
                    technician.contract_type.value,
                    int(technician.active),
                ),
            )
            await db.commit()
        logger.info("technician_saved", technician_id=technician.id)

    async def add_absence(self, absence: TechnicianAbsence) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT INTO technician_absences (technician_id, absence_date, shift, reason)
                   VALUES (?, ?, ?, ?)""",
                (
                    absence.technician_id,
                    absence.absence_date.isoformat(),
                    absence.shift.value if absence.shift else None,
                    absence.reason,
                ),
            )
            await db.commit()
        logger.info(
            "technician_absence_added",
            technician_id=absence.technician_id,
            date=absence.absence_date.isoformat(),
        )

    async def list_absences(self, day: date) -> list[TechnicianAbsence]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM technician_absences WHERE absence_date = ?", (day.isoformat(),)
            )
            rows = await cursor.fetchall()
            return [
                TechnicianAbsence(
                    technician_id=r["technician_id"],
                    absence_date=date.fromisoformat(r["absence_date"]),
                    shift=Shift(r["shift"]) if r["shift"] else None,
                    reason=r["reason"],
                )
                for r in rows
            ]
