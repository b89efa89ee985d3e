"""Typed key/value records persisted across restarts.

Keys are namespaced strings such as ``compile.last_tick.GameHotfix``. Each
value is stored with its kind so it reads back with the same Python type.
"""

import logging
from datetime import datetime
from typing import Any

from dylink.db.connection import Database
from dylink.domain import CompileRecord

logger = logging.getLogger(__name__)

COMPILE_TICK_NAMESPACE = "compile.last_tick"
LIBRARY_TICK_KEY = "compile.library.last_tick"
PENDING_UNIT_NAMESPACE = "build.unit.pending"


def record_key(namespace: str, name: str) -> str:
    """Build a namespaced key for a module."""
    return f"{namespace}.{name}"


def _encode(value: Any) -> tuple[str, str]:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "bool", "1" if value else "0"
    if isinstance(value, int):
        return "int", str(value)
    if isinstance(value, float):
        return "float", repr(value)
    if isinstance(value, datetime):
        return "datetime", value.isoformat()
    if isinstance(value, str):
        return "str", value
    raise TypeError(f"Unsupported record value type: {type(value).__name__}")


def _decode(kind: str, raw: str) -> Any:
    if kind == "bool":
        return raw == "1"
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind == "datetime":
        return datetime.fromisoformat(raw)
    return raw


class RecordStore:
    """Key/value store for compile records and build-unit bookkeeping."""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, key: str, default: Any = None) -> Any:
        row = await self.db.fetchone("SELECT kind, value FROM records WHERE key = ?", (key,))
        if row is None:
            return default
        return _decode(row["kind"], row["value"])

    async def set(self, key: str, value: Any) -> None:
        kind, raw = _encode(value)
        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO records (key, kind, value, updated_at)
                VALUES (?, ?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    kind = excluded.kind,
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, kind, raw),
            )

    async def delete(self, key: str) -> bool:
        async with self.db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM records WHERE key = ?", (key,))
        return cursor.rowcount > 0

    async def keys(self, namespace: str) -> list[str]:
        rows = await self.db.fetchall(
            "SELECT key FROM records WHERE key LIKE ? ORDER BY key",
            (f"{namespace}.%",),
        )
        return [row["key"] for row in rows]

    async def get_str(self, key: str, default: str = "") -> str:
        return str(await self.get(key, default))

    async def get_bool(self, key: str, default: bool = False) -> bool:
        return bool(await self.get(key, default))

    async def get_int(self, key: str, default: int = 0) -> int:
        return int(await self.get(key, default))

    async def get_float(self, key: str, default: float = 0.0) -> float:
        return float(await self.get(key, default))

    async def get_datetime(self, key: str) -> datetime | None:
        value = await self.get(key)
        return value if isinstance(value, datetime) else None

    # Compile records

    async def get_compile_record(self, name: str) -> CompileRecord | None:
        """Return the module's compile record, or None if it was never compiled."""
        tick = await self.get(record_key(COMPILE_TICK_NAMESPACE, name))
        if tick is None:
            return None
        return CompileRecord(name=name, last_compile_tick=int(tick))

    async def save_compile_record(self, record: CompileRecord) -> None:
        await self.set(record_key(COMPILE_TICK_NAMESPACE, record.name), record.last_compile_tick)
        logger.debug(f"Compile record for {record.name}: {record.last_compile_tick}")
