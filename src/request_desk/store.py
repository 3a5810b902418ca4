"""aiosqlite-backed record store.

Exposes the small CRUD contract the core needs (find, get, insert, update,
upsert) over four fixed collections. Every write runs in its own
BEGIN IMMEDIATE transaction under the shared write lock.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping, Sequence
from contextlib import suppress
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import aiosqlite

from request_desk.errors import (
    InvalidInputError,
    NotFoundError,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger("request_desk")

REQUESTS = "requests"
MESSAGES = "messages"
PROFILES = "profiles"
REQUEST_VIEWS = "request_views"

COLLECTIONS: dict[str, tuple[str, ...]] = {
    REQUESTS: (
        "id", "title", "client_id", "reviewer_id", "status", "urgency",
        "created_at", "updated_at",
    ),
    MESSAGES: ("id", "request_id", "user_id", "text", "is_internal", "created_at"),
    PROFILES: ("id", "email", "role", "created_at"),
    REQUEST_VIEWS: ("user_id", "request_id", "last_viewed_at"),
}

# Collections keyed by a single "id" column; the store fills it when absent.
_ID_COLLECTIONS = frozenset({REQUESTS, MESSAGES, PROFILES})

_TIMESTAMP_DEFAULTS: dict[str, tuple[str, ...]] = {
    REQUESTS: ("created_at", "updated_at"),
    MESSAGES: ("created_at",),
    PROFILES: ("created_at",),
}

_TRANSIENT_MARKERS = ("database is locked", "database is busy", "database table is locked")


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO 8601 UTC with microsecond precision.

    Fixed width, so stored strings sort in time order.
    """
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def utc_timestamp() -> str:
    return format_timestamp(utc_now())


def _translate(exc: aiosqlite.Error) -> Exception:
    text = str(exc).lower()
    if isinstance(exc, aiosqlite.OperationalError) and any(
        marker in text for marker in _TRANSIENT_MARKERS
    ):
        logger.warning("store -> transient failure: %s", exc)
        return TransientStoreError(f"Store temporarily unavailable: {exc}")
    if isinstance(exc, aiosqlite.IntegrityError):
        return InvalidInputError(f"Store constraint violated: {exc}")
    return StoreError(f"Store operation failed: {exc}")


def _columns(collection: str) -> tuple[str, ...]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise InvalidInputError(f"Unknown collection: {collection!r}") from None


def _check_columns(collection: str, names: Sequence[str]) -> None:
    allowed = _columns(collection)
    unknown = [name for name in names if name not in allowed]
    if unknown:
        raise InvalidInputError(
            f"Unknown column(s) for {collection}: {', '.join(sorted(unknown))}"
        )


def _bind(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class RecordStore:
    """CRUD access to the desk collections."""

    def __init__(self, db: aiosqlite.Connection, write_lock: asyncio.Lock | None = None) -> None:
        self.db = db
        self.write_lock = write_lock if write_lock is not None else asyncio.Lock()

    async def _rollback_quietly(self) -> None:
        with suppress(Exception):
            await self.db.execute("ROLLBACK")

    async def _read(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        try:
            cursor = await self.db.execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise _translate(exc) from exc
        return [dict(row) for row in rows]

    async def _write(self, sql: str, params: Sequence[Any]) -> int:
        async with self.write_lock:
            try:
                await self.db.execute("BEGIN IMMEDIATE")
                cursor = await self.db.execute(sql, params)
                rowcount = cursor.rowcount
                await self.db.execute("COMMIT")
            except aiosqlite.Error as exc:
                await self._rollback_quietly()
                raise _translate(exc) from exc
        return rowcount

    async def find(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order_by: Sequence[tuple[str, str]] = (),
    ) -> list[dict[str, Any]]:
        """Return records matching every filter.

        Scalar filter values match with ``=``, ``None`` with ``IS NULL`` and
        lists/tuples/sets with ``IN``. Results are ordered by ``order_by``
        (column, "asc"|"desc") and then by insertion order.
        """
        filters = dict(filters or {})
        _check_columns(collection, list(filters))
        _check_columns(collection, [column for column, _ in order_by])

        conditions: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            if value is None:
                conditions.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set, frozenset)):
                values = list(dict.fromkeys(value))
                if not values:
                    return []
                placeholders = ", ".join("?" for _ in values)
                conditions.append(f"{column} IN ({placeholders})")
                params.extend(_bind(v) for v in values)
            else:
                conditions.append(f"{column} = ?")
                params.append(_bind(value))

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        ordering: list[str] = []
        for column, direction in order_by:
            direction = direction.upper()
            if direction not in ("ASC", "DESC"):
                raise InvalidInputError(f"Invalid sort direction: {direction!r}")
            ordering.append(f"{column} {direction}")
        tiebreak = "DESC" if ordering and ordering[0].endswith("DESC") else "ASC"
        ordering.append(f"rowid {tiebreak}")

        return await self._read(
            f"SELECT * FROM {collection} {where_clause} ORDER BY {', '.join(ordering)}",
            params,
        )

    async def get(self, collection: str, record_id: str) -> dict[str, Any]:
        """Return one record by id or raise NotFoundError."""
        if collection not in _ID_COLLECTIONS:
            raise InvalidInputError(f"Collection {collection!r} has no id column")
        rows = await self._read(f"SELECT * FROM {collection} WHERE id = ?", (record_id,))
        if not rows:
            raise NotFoundError(collection, record_id)
        return rows[0]

    async def insert(self, collection: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a record, filling id and timestamps when absent."""
        values = dict(record)
        _check_columns(collection, list(values))
        if collection in _ID_COLLECTIONS and not values.get("id"):
            values["id"] = str(uuid.uuid4())
        now = utc_timestamp()
        for column in _TIMESTAMP_DEFAULTS.get(collection, ()):
            if values.get(column) is None:
                values[column] = now

        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        await self._write(
            f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
            [_bind(values[column]) for column in columns],
        )
        if collection in _ID_COLLECTIONS:
            return await self.get(collection, values["id"])
        return values

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> None:
        """Apply ``patch`` to the record with ``record_id`` or raise NotFoundError."""
        if collection not in _ID_COLLECTIONS:
            raise InvalidInputError(f"Collection {collection!r} has no id column")
        values = dict(patch)
        if not values:
            raise InvalidInputError("Empty update patch")
        if "id" in values:
            raise InvalidInputError("Record ids are immutable")
        _check_columns(collection, list(values))
        if "updated_at" in _columns(collection) and "updated_at" not in values:
            values["updated_at"] = utc_timestamp()

        assignments = ", ".join(f"{column} = ?" for column in values)
        rowcount = await self._write(
            f"UPDATE {collection} SET {assignments} WHERE id = ?",
            [*(_bind(value) for value in values.values()), record_id],
        )
        if rowcount == 0:
            raise NotFoundError(collection, record_id)

    async def upsert(
        self,
        collection: str,
        record: Mapping[str, Any],
        conflict_key: Sequence[str],
        monotonic: Sequence[str] = (),
    ) -> None:
        """Insert ``record`` or update the row sharing ``conflict_key``.

        Columns listed in ``monotonic`` keep the greater of the stored and
        incoming values, so they never move backwards.
        """
        values = dict(record)
        _check_columns(collection, list(values))
        _check_columns(collection, list(conflict_key))
        missing = [column for column in conflict_key if column not in values]
        if missing:
            raise InvalidInputError(f"Upsert record lacks conflict key column(s): {missing}")

        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        updates: list[str] = []
        for column in columns:
            if column in conflict_key:
                continue
            if column in monotonic:
                updates.append(
                    f"{column} = MAX(COALESCE({collection}.{column}, excluded.{column}), "
                    f"excluded.{column})"
                )
            else:
                updates.append(f"{column} = excluded.{column}")
        conflict_action = "DO UPDATE SET " + ", ".join(updates) if updates else "DO NOTHING"

        await self._write(
            f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({', '.join(conflict_key)}) {conflict_action}",
            [_bind(values[column]) for column in columns],
        )
