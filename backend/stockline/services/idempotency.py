"""
Deduplication of retried mutating requests.

A client sends `Idempotency-Key`; the guard fingerprints (method, path, key). The first request
takes a short-lived `processing` marker and runs; its response is stored for a day and replayed
verbatim to any retry. A retry that arrives while the first is still running gets
`RequestInProgress` instead of running the handler twice.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol

from sqlalchemy import DateTime, String, bindparam, delete, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockline.core.config import Settings
from stockline.core.enums import IdempotencyState
from stockline.core.errors import IdempotencyKeyRequired, InvalidIdempotencyKey, RequestInProgress
from stockline.models.base import utcnow
from stockline.models.idempotency_key import IdempotencyKey
from stockline.models.sql_enums import idempotency_state_enum


logger = logging.getLogger(__name__)

KEY_MIN_LENGTH = 16
KEY_MAX_LENGTH = 255
SWEEP_INTERVAL_SECONDS = 300


def request_fingerprint(method: str, path: str, key: str) -> str:
    return hashlib.sha256(f"{method.upper()}:{path}:{key}".encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StoredResponse:
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClaimResult:
    state: IdempotencyState | None
    response: StoredResponse | None = None

    @property
    def claimed(self) -> bool:
        return self.state is None


@dataclass(frozen=True)
class IdempotencyDecision:
    key: str | None
    fingerprint: str | None
    replay: StoredResponse | None = None

    @property
    def should_proceed(self) -> bool:
        return self.replay is None


class IdempotencyStore(Protocol):
    async def claim(self, fingerprint: str, *, processing_ttl_seconds: int) -> ClaimResult:
        """Take the processing marker, or report what already holds the fingerprint."""
        ...

    async def complete(self, fingerprint: str, response: StoredResponse, *, ttl_seconds: int) -> None: ...

    async def release(self, fingerprint: str) -> None: ...


@dataclass
class _MemoryEntry:
    state: IdempotencyState
    expires_at: float
    response: StoredResponse | None = None


class InMemoryIdempotencyStore:
    """Single-process store. Expired entries are ignored on read and swept every few minutes."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, _MemoryEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    async def claim(self, fingerprint: str, *, processing_ttl_seconds: int) -> ClaimResult:
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
                self._sweep_locked(now)

            entry = self._entries.get(fingerprint)
            if entry is not None and entry.expires_at > now:
                return ClaimResult(state=entry.state, response=entry.response)

            self._entries[fingerprint] = _MemoryEntry(
                state=IdempotencyState.PROCESSING,
                expires_at=now + processing_ttl_seconds,
            )
            return ClaimResult(state=None)

    async def complete(self, fingerprint: str, response: StoredResponse, *, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[fingerprint] = _MemoryEntry(
                state=IdempotencyState.COMPLETED,
                expires_at=self._clock() + ttl_seconds,
                response=response,
            )

    async def release(self, fingerprint: str) -> None:
        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None and entry.state == IdempotencyState.PROCESSING:
                del self._entries[fingerprint]

    async def sweep(self) -> int:
        async with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [fp for fp, entry in self._entries.items() if entry.expires_at <= now]
        for fp in expired:
            del self._entries[fp]
        self._last_sweep = now
        return len(expired)


_CLAIM_SQL = text(
    "INSERT INTO idempotency_keys (fingerprint, state, locked_at, expires_at) "
    "VALUES (:fingerprint, :state, :locked_at, :expires_at) "
    "ON CONFLICT (fingerprint) DO UPDATE SET "
    "state = excluded.state, "
    "locked_at = excluded.locked_at, "
    "expires_at = excluded.expires_at, "
    "status_code = NULL, "
    "body = NULL, "
    "headers = NULL "
    "WHERE idempotency_keys.expires_at <= :locked_at"
).bindparams(
    bindparam("fingerprint", type_=String(64)),
    bindparam("state", type_=idempotency_state_enum),
    bindparam("locked_at", type_=DateTime(timezone=True)),
    bindparam("expires_at", type_=DateTime(timezone=True)),
)


class SqlIdempotencyStore:
    """
    Shared store for multi-worker deployments.

    Each call runs in its own short transaction so the processing marker is visible to other
    workers before the guarded handler starts.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def claim(self, fingerprint: str, *, processing_ttl_seconds: int) -> ClaimResult:
        now = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                res = await session.execute(
                    _CLAIM_SQL,
                    {
                        "fingerprint": fingerprint,
                        "state": IdempotencyState.PROCESSING,
                        "locked_at": now,
                        "expires_at": now + timedelta(seconds=processing_ttl_seconds),
                    },
                )
                # rowcount is 1 if inserted/taken over, 0 if a live entry holds the fingerprint.
                if res.rowcount == 1:
                    return ClaimResult(state=None)

                row = await session.get(IdempotencyKey, fingerprint)
                if row is None:
                    return ClaimResult(state=IdempotencyState.PROCESSING)
                if row.state == IdempotencyState.COMPLETED and row.status_code is not None:
                    return ClaimResult(
                        state=IdempotencyState.COMPLETED,
                        response=StoredResponse(status_code=row.status_code, body=row.body, headers=dict(row.headers or {})),
                    )
                return ClaimResult(state=IdempotencyState.PROCESSING)

    async def complete(self, fingerprint: str, response: StoredResponse, *, ttl_seconds: int) -> None:
        now = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(IdempotencyKey)
                    .where(IdempotencyKey.fingerprint == fingerprint)
                    .values(
                        state=IdempotencyState.COMPLETED,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                        status_code=response.status_code,
                        body=response.body,
                        headers=response.headers or None,
                    )
                )

    async def release(self, fingerprint: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(IdempotencyKey).where(
                        IdempotencyKey.fingerprint == fingerprint,
                        IdempotencyKey.state == IdempotencyState.PROCESSING,
                    )
                )

    async def sweep(self) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                res = await session.execute(delete(IdempotencyKey).where(IdempotencyKey.expires_at <= utcnow()))
                return int(res.rowcount or 0)


class IdempotencyGuard:
    def __init__(
        self,
        store: IdempotencyStore,
        *,
        ttl_seconds: int = 86400,
        processing_ttl_seconds: int = 60,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._processing_ttl_seconds = processing_ttl_seconds

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> "IdempotencyGuard":
        store: IdempotencyStore
        if settings.idempotency_backend == "database":
            if session_factory is None:
                raise ValueError("IDEMPOTENCY_BACKEND=database needs a session factory")
            store = SqlIdempotencyStore(session_factory)
        else:
            store = InMemoryIdempotencyStore()
        return cls(
            store,
            ttl_seconds=settings.idempotency_ttl_seconds,
            processing_ttl_seconds=settings.idempotency_processing_ttl_seconds,
        )

    async def before(
        self,
        key: str | None,
        *,
        method: str,
        path: str,
        required: bool = False,
    ) -> IdempotencyDecision:
        key = (key or "").strip() or None
        if key is None:
            if required:
                raise IdempotencyKeyRequired("Idempotency-Key header is required for this endpoint")
            return IdempotencyDecision(key=None, fingerprint=None)
        if not (KEY_MIN_LENGTH <= len(key) <= KEY_MAX_LENGTH):
            raise InvalidIdempotencyKey(
                f"Idempotency-Key must be {KEY_MIN_LENGTH}-{KEY_MAX_LENGTH} characters",
                length=len(key),
            )

        fingerprint = request_fingerprint(method, path, key)
        claim = await self._store.claim(fingerprint, processing_ttl_seconds=self._processing_ttl_seconds)
        if claim.claimed:
            return IdempotencyDecision(key=key, fingerprint=fingerprint)
        if claim.state == IdempotencyState.COMPLETED and claim.response is not None:
            logger.info("Idempotent replay", extra={"method": method, "path": path})
            return IdempotencyDecision(key=key, fingerprint=fingerprint, replay=claim.response)

        logger.warning("Idempotent request still processing", extra={"method": method, "path": path})
        raise RequestInProgress("A request with this Idempotency-Key is already being processed")

    async def after(self, fingerprint: str, *, status_code: int, body: Any, headers: dict[str, str] | None = None) -> None:
        await self._store.complete(
            fingerprint,
            StoredResponse(status_code=status_code, body=body, headers=dict(headers or {})),
            ttl_seconds=self._ttl_seconds,
        )

    async def release(self, fingerprint: str) -> None:
        await self._store.release(fingerprint)
