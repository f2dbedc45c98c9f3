# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Adaptive learning: prior user confirmations keyed by URL pattern.

History is one JSON array stored under a single key of a small key-value
store, capped at ``limit`` records (oldest evicted first).  A page whose
pattern was confirmed often enough earns up to 15 confidence points, and a
strong history (success rate above 0.8 over at least 3 records) overrides
the detection threshold outright.

Stores:
  - ``InMemoryKeyValueStore``   tests and hosts without persistence
  - ``SqliteKeyValueStore``     aiosqlite, WAL, versioned schema
"""

from __future__ import annotations

import logging
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from . import DetectionResult, FormType, utc_timestamp
from .errors import PersistenceError

logger = logging.getLogger("bizreg.adaptive")

MAX_ADAPTIVE_SCORE = 15
OVERRIDE_SUCCESS_RATE = 0.8
OVERRIDE_MIN_MATCHES = 3

_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class AdaptiveRecord(BaseModel):
    """One past detection and whether the user confirmed it."""

    model_config = ConfigDict(populate_by_name=True)

    url_pattern: str = Field(alias="urlPattern", description="Hostname + first path segment")
    url_root: str = Field(default="", alias="urlRoot", description="scheme://host[:port] of the page")
    state: str | None = Field(default=None, description="Two-letter jurisdiction code")
    form_type: FormType = Field(default=FormType.GENERAL, alias="formType")
    confidence_score: int = Field(default=0, ge=0, le=100, alias="confidenceScore")
    user_confirmed: bool = Field(alias="userConfirmed", description="User agreed the page is a registration form")
    user_feedback: str | None = Field(default=None, alias="userFeedback")
    timestamp: str = Field(default_factory=utc_timestamp)


_HISTORY = TypeAdapter(list[AdaptiveRecord])


@dataclass(frozen=True, slots=True)
class AdaptiveSignal:
    score: int = 0  # 0-15
    override: bool = False
    matches: int = 0
    success_rate: float = 0.0


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyValueStore(Protocol):
    """Async string key-value storage."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value


_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class SqliteKeyValueStore:
    """SQLite-backed ``KeyValueStore``.

    Use the ``create()`` async classmethod factory; never instantiate directly.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteKeyValueStore:
        """Open (or create) the history database.

        Raises:
            PersistenceError: If the database cannot be opened or has a newer schema.
        """
        path = Path(db_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            db = await aiosqlite.connect(str(path))
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"cannot open {path}: {e}") from e
        try:
            await db.execute("PRAGMA journal_mode = WAL")
            cursor = await db.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version > _SCHEMA_VERSION:
                raise PersistenceError(
                    f"Database schema version {current_version} is newer than supported version {_SCHEMA_VERSION}"
                )
            if current_version < _SCHEMA_VERSION:
                await db.execute(_CREATE_KV)
                await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                await db.commit()
        except BaseException:
            await db.close()
            raise

        return cls(db)

    async def get(self, key: str) -> str | None:
        try:
            cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"read {key!r} failed: {e}") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, utc_timestamp()),
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"write {key!r} failed: {e}") from e

    async def close(self) -> None:
        """Close the database connection. Idempotent."""
        with suppress(Exception):
            await self._db.close()


# ---------------------------------------------------------------------------
# Learning store
# ---------------------------------------------------------------------------


class AdaptiveLearningStore:
    """Bounded detection history with per-pattern success scoring."""

    def __init__(self, store: KeyValueStore, *, key: str = "bizreg.prior_detections", limit: int = 100) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._store = store
        self._key = key
        self._limit = limit

    @property
    def limit(self) -> int:
        return self._limit

    async def load(self) -> list[AdaptiveRecord]:
        """All stored records, oldest first.

        Raises:
            PersistenceError: If the store fails or holds unreadable history.
        """
        try:
            raw = await self._store.get(self._key)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"read {self._key!r} failed: {type(e).__name__}: {e}") from e
        if not raw:
            return []
        try:
            return _HISTORY.validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"corrupt history under {self._key!r}: {e.error_count()} errors") from e

    async def lookup(self, url_pattern: str, url: str) -> list[AdaptiveRecord]:
        """Records with the same URL pattern, or whose origin prefixes *url*."""
        return [
            r
            for r in await self.load()
            if r.url_pattern == url_pattern or (r.url_root and r.url_root in url)
        ]

    async def evaluate(self, url_pattern: str, url: str) -> AdaptiveSignal:
        """Adaptive score for a page; a failing store yields a zero signal."""
        try:
            matches = await self.lookup(url_pattern, url)
        except PersistenceError as e:
            logger.warning("Adaptive history unavailable, scoring 0: %s", e)
            return AdaptiveSignal()
        if not matches:
            return AdaptiveSignal()
        rate = sum(1 for r in matches if r.user_confirmed) / len(matches)
        return AdaptiveSignal(
            score=round(rate * MAX_ADAPTIVE_SCORE),
            override=rate > OVERRIDE_SUCCESS_RATE and len(matches) >= OVERRIDE_MIN_MATCHES,
            matches=len(matches),
            success_rate=rate,
        )

    async def record(self, result: DetectionResult, *, confirmed: bool, feedback: str | None = None) -> AdaptiveRecord:
        """Append user feedback for *result*, evicting the oldest records beyond the limit.

        Raises:
            PersistenceError: If history cannot be read or written.
        """
        entry = AdaptiveRecord(
            url_pattern=result.url_pattern,
            url_root=result.url_root,
            state=result.state,
            form_type=result.form_type,
            confidence_score=result.confidence_score,
            user_confirmed=confirmed,
            user_feedback=feedback,
        )
        history = await self.load()
        history.append(entry)
        if len(history) > self._limit:
            history = history[-self._limit :]
        try:
            await self._store.set(self._key, _HISTORY.dump_json(history, by_alias=True).decode("utf-8"))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"write {self._key!r} failed: {type(e).__name__}: {e}") from e
        logger.info(
            "Recorded %s feedback for %s (%d in history)",
            "positive" if confirmed else "negative",
            entry.url_pattern,
            len(history),
        )
        return entry


class NullAdaptiveStore:
    """Adaptive learning disabled: never scores, never records."""

    async def evaluate(self, url_pattern: str, url: str) -> AdaptiveSignal:
        return AdaptiveSignal()

    async def record(self, result: DetectionResult, *, confirmed: bool, feedback: str | None = None) -> None:
        logger.debug("Adaptive learning disabled; feedback for %s dropped", result.url_pattern)
