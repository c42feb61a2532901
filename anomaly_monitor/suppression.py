from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from psycopg_pool import ConnectionPool

Clock = Callable[[], float]


class SuppressionStoreError(RuntimeError):
    """Raised when the suppression store cannot be read or written."""


class SuppressionStore(ABC):
    """Key/value boundary remembering recently notified signals until their TTL lapses."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True while ``key`` is stored and unexpired."""

    @abstractmethod
    def put(self, key: str, ttl_seconds: int) -> None:
        """Store ``key`` so that it expires after ``ttl_seconds``."""

    def close(self) -> None:  # pragma: no cover - optional hook
        """Allow stores with resources to clean up."""


class InMemorySuppressionStore(SuppressionStore):
    """Process-local store; suppression does not survive a restart."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._expiry: Dict[str, float] = {}
        self._lock = threading.Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            expires_at = self._expiry.get(key)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._expiry[key]
                return False
            return True

    def put(self, key: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._expiry[key] = self._clock() + ttl_seconds


class JsonFileSuppressionStore(SuppressionStore):
    """File-backed store mapping each key to its expiry epoch."""

    def __init__(
        self,
        path: Path,
        clock: Clock = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._path = path
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            expires_at = self._load().get(key)
        return expires_at is not None and expires_at > self._clock()

    def put(self, key: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            now = self._clock()
            state = {name: expiry for name, expiry in self._load().items() if expiry > now}
            state[key] = now + ttl_seconds
            self._save(state)

    def _load(self) -> Dict[str, float]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except json.JSONDecodeError:
            self._log.warning("Suppression state file corrupted, ignoring contents.", extra={"path": str(self._path)})
            return {}
        except OSError as exc:
            raise SuppressionStoreError(f"cannot read {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            return {}
        state: Dict[str, float] = {}
        for name, expiry in raw.items():
            try:
                state[str(name)] = float(expiry)
            except (TypeError, ValueError):
                continue
        return state

    def _save(self, state: Dict[str, float]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as handle:
                json.dump(state, handle, indent=2, sort_keys=True)
        except OSError as exc:
            raise SuppressionStoreError(f"cannot write {self._path}: {exc}") from exc


@dataclass(frozen=True)
class PostgresSuppressionConfig:
    conninfo: str
    min_pool_size: int = 1
    max_pool_size: int = 4
    connect_timeout_seconds: int = 10
    max_idle_seconds: int = 300
    table: str = "signal_suppression"

    def __post_init__(self) -> None:
        if not self.conninfo.strip():
            raise ValueError("conninfo must not be empty")
        if not self.table.replace("_", "").isalnum():
            raise ValueError(f"invalid table name: {self.table}")


class PostgresSuppressionStore(SuppressionStore):
    """PostgreSQL-backed store so several monitor instances share suppression state."""

    def __init__(
        self,
        config: PostgresSuppressionConfig,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self._table = config.table
        self._pool = pool or ConnectionPool(
            conninfo=config.conninfo,
            min_size=max(config.min_pool_size, 1),
            max_size=max(config.max_pool_size, max(config.min_pool_size, 1)),
            kwargs={"autocommit": True, "connect_timeout": config.connect_timeout_seconds},
            max_idle=config.max_idle_seconds,
            open=True,
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self._execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                key TEXT PRIMARY KEY,
                expires_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    def exists(self, key: str) -> bool:
        row = self._execute(
            f"SELECT 1 FROM {self._table} WHERE key = %s AND expires_at > now()",
            (key,),
            fetch=True,
        )
        return row is not None

    def put(self, key: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._execute(
            f"""
            INSERT INTO {self._table} (key, expires_at)
            VALUES (%s, now() + %s * interval '1 second')
            ON CONFLICT (key) DO UPDATE SET expires_at = EXCLUDED.expires_at
            """,
            (key, ttl_seconds),
        )

    def _execute(self, query: str, params: tuple = (), fetch: bool = False):
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return cur.fetchone() if fetch else None
        except Exception as exc:
            raise SuppressionStoreError(f"suppression query failed: {exc}") from exc

    def close(self) -> None:
        self._pool.close()


SUPPRESSION_BACKENDS = ("memory", "file", "postgres", "none")


def build_suppression_store(
    kind: str,
    *,
    state_file: Path | None = None,
    database_url: str | None = None,
) -> SuppressionStore | None:
    """Factory helper for the suppression backend; ``none`` disables suppression."""
    normalized = (kind or "").strip().lower()
    if normalized == "none":
        return None
    if normalized == "memory":
        return InMemorySuppressionStore()
    if normalized == "file":
        if state_file is None:
            raise ValueError("file suppression backend requires a state file path")
        return JsonFileSuppressionStore(state_file)
    if normalized == "postgres":
        if not database_url:
            raise ValueError("postgres suppression backend requires a database URL")
        return PostgresSuppressionStore(PostgresSuppressionConfig(conninfo=database_url))
    raise ValueError(f"Unsupported suppression backend: {kind!r} (expected one of {', '.join(SUPPRESSION_BACKENDS)})")
