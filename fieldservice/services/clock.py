"""Reloj del servicio. Las marcas de tiempo se guardan siempre en UTC."""

from __future__ import annotations

from datetime import UTC, datetime, tzinfo


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime, tz: tzinfo = UTC) -> datetime:
    """Convierte a UTC. Un datetime naive se interpreta en la zona `tz`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(UTC)
