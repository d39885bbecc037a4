"""Data Access Layer: pooled async store access with cache-aside reads.

Invariants:
    - Every store failure is translated to DatabaseError exactly once and counted once
    - Reads with a cache key check the cache first; hits never touch the store
    - Only SELECT statements that return at least one row populate the cache
    - insert/update/delete invalidate "{table}:*" after the write commits
    - transaction() owns one connection: commit on success, rollback on any raise,
      connection released on every path
    - Row payloads are JSON-compatible, so a cached read equals a fresh one

Design Decisions:
    - SQLAlchemy Core `text()` over an ORM: modules own their SQL, the framework owns
      pooling, timing, caching and error translation
    - expose_details=False (production) keeps the driver message and SQL out of responses
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from fastapi.encoders import jsonable_encoder
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from autoregistry.config import Settings
from autoregistry.core.errors import DatabaseError, ValidationError
from autoregistry.infrastructure.cache import CacheClient

logger = logging.getLogger(__name__)

_STORE_FAILURES = (SQLAlchemyError, OSError)

CACHED_RESULT_KEYS = frozenset({"rows", "rowCount", "command", "queryTime"})

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# SQLSTATE -> (code, message, http status)
STORE_ERROR_TABLE = {
    "23505": ("DUPLICATE_ENTRY", "Record already exists", 409),
    "23503": ("FOREIGN_KEY_VIOLATION", "Referenced record does not exist", 400),
    "23502": ("REQUIRED_FIELD_MISSING", "Required field cannot be empty", 400),
    "42703": ("INVALID_FIELD", "Invalid field in query", 400),
    "42P01": ("TABLE_NOT_FOUND", "Table does not exist", 500),
}

# Drivers without SQLSTATE (SQLite) report constraint classes in the message
_MESSAGE_SQLSTATE = (
    ("unique constraint failed", "23505"),
    ("foreign key constraint failed", "23503"),
    ("not null constraint failed", "23502"),
    ("no such column", "42703"),
    ("has no column named", "42703"),
    ("no such table", "42P01"),
)


@dataclass
class QueryResult:
    rows: list[dict]
    row_count: int
    command: str
    query_time_ms: float
    from_cache: bool = False

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "rowCount": self.row_count,
            "command": self.command,
            "queryTime": self.query_time_ms,
            "fromCache": self.from_cache,
        }

    @classmethod
    def from_cached(cls, payload: Any) -> "QueryResult | None":
        """Rebuild a cached result; None when the payload is not one this layer wrote."""
        if not isinstance(payload, dict) or not CACHED_RESULT_KEYS <= payload.keys():
            return None
        if not isinstance(payload["rows"], list):
            return None
        return cls(
            rows=payload["rows"],
            row_count=payload["rowCount"],
            command=payload["command"],
            query_time_ms=payload["queryTime"],
            from_cache=True,
        )

    @property
    def first(self) -> dict | None:
        return self.rows[0] if self.rows else None


@dataclass
class QueryStats:
    queries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    def to_dict(self) -> dict:
        return {
            "queries": self.queries,
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "errors": self.errors,
            "cacheHitRate": f"{self.hit_rate * 100:.2f}%",
        }


def statement_command(sql: str) -> str:
    parts = sql.strip().split(None, 1)
    return parts[0].upper() if parts else ""


def check_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(
            f"Invalid identifier: {name!r}", code="INVALID_IDENTIFIER",
        )
    return name


def extract_sqlstate(exc: BaseException) -> str | None:
    orig = getattr(exc, "orig", None) or exc
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str) and value:
                return value
    message = str(orig).lower()
    for needle, sqlstate in _MESSAGE_SQLSTATE:
        if needle in message:
            return sqlstate
    return None


def translate_store_error(
    exc: BaseException, sql: str, expose_details: bool = False,
) -> DatabaseError:
    """Map a raw driver/pool failure to a DatabaseError with domain code and status."""
    sqlstate = extract_sqlstate(exc)
    code, message, status = STORE_ERROR_TABLE.get(
        sqlstate, ("DATABASE_ERROR", "Database operation failed", 500),
    )
    details = None
    if expose_details:
        details = {"originalError": str(getattr(exc, "orig", None) or exc), "query": sql}
    return DatabaseError(message, code, status, sqlstate=sqlstate, details=details)


async def _run(conn: AsyncConnection, sql: str, params: Mapping[str, Any] | None) -> QueryResult:
    started = time.perf_counter()
    result = await conn.execute(text(sql), dict(params or {}))
    if result.returns_rows:
        rows = jsonable_encoder([dict(row) for row in result.mappings().all()])
        row_count = len(rows)
    else:
        rows, row_count = [], max(result.rowcount, 0)
    elapsed = (time.perf_counter() - started) * 1000
    return QueryResult(rows, row_count, statement_command(sql), round(elapsed, 3))


class TransactionHandle:
    """Query surface bound to one transaction's connection. Never caches."""

    def __init__(self, conn: AsyncConnection, owner: "DataAccess"):
        self._conn = conn
        self._owner = owner

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> QueryResult:
        self._owner.counters.queries += 1
        try:
            return await _run(self._conn, sql, params)
        except _STORE_FAILURES as e:
            raise self._owner._store_failure(e, sql) from e


class DataAccess:
    """Connection pool + optional cache, exposing cache-aside query primitives."""

    def __init__(
        self,
        engine: AsyncEngine,
        cache: CacheClient | None = None,
        default_ttl: int = 300,
        expose_details: bool = False,
    ):
        self.engine = engine
        self.cache = cache or CacheClient(None)
        self.default_ttl = default_ttl
        self.expose_details = expose_details
        self.counters = QueryStats()

    @classmethod
    def from_settings(cls, settings: Settings, cache: CacheClient | None = None) -> "DataAccess":
        kwargs: dict[str, Any] = {"pool_pre_ping": True, "pool_recycle": 3600}
        if settings.database_url.startswith("postgresql+asyncpg"):
            kwargs.update(
                pool_size=settings.database_pool_min,
                max_overflow=max(settings.database_pool_max - settings.database_pool_min, 0),
                pool_timeout=settings.database_connect_timeout_seconds,
                connect_args={
                    "timeout": settings.database_connect_timeout_seconds,
                    "command_timeout": settings.database_statement_timeout_seconds,
                },
            )
        engine = create_async_engine(settings.database_url, **kwargs)
        return cls(
            engine, cache,
            default_ttl=settings.cache_default_ttl_seconds,
            expose_details=not settings.is_production,
        )

    def _store_failure(self, exc: BaseException, sql: str) -> DatabaseError:
        self.counters.errors += 1
        error = translate_store_error(exc, sql, self.expose_details)
        logger.error(
            f"Store error {error.code}: {exc}",
            extra={"error_code": error.code, "operation": statement_command(sql)},
        )
        return error

    # ─── Queries ─────────────────────────────────────────────────

    async def query(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        cache_key: str | None = None,
        ttl_seconds: int | None = None,
    ) -> QueryResult:
        """Cache-aside query. Raises DatabaseError on store failure."""
        self.counters.queries += 1

        if cache_key:
            cached = await self.cache.get(cache_key)
            hit = QueryResult.from_cached(cached) if cached is not None else None
            if hit is not None:
                self.counters.cache_hits += 1
                return hit
            if cached is not None:
                logger.warning(
                    f"Ignoring cached value at {cache_key}: not a query result",
                    extra={"cache_key": cache_key},
                )
            self.counters.cache_misses += 1

        try:
            async with self.engine.begin() as conn:
                result = await _run(conn, sql, params)
        except _STORE_FAILURES as e:
            raise self._store_failure(e, sql) from e

        if cache_key and result.command == "SELECT" and result.rows:
            await self.cache.set(
                cache_key, result.to_dict(),
                ttl_seconds if ttl_seconds is not None else self.default_ttl,
            )
        return result

    async def transaction(self, fn: Callable[[TransactionHandle], Awaitable[Any]]) -> Any:
        """Run fn(handle) inside BEGIN/COMMIT; any raise rolls everything back."""
        try:
            async with self.engine.connect() as conn:
                trans = await conn.begin()
                try:
                    result = await fn(TransactionHandle(conn, self))
                except BaseException as original:
                    try:
                        await trans.rollback()
                    except _STORE_FAILURES as rollback_error:
                        # The body failure is the one reported and counted
                        logger.error(
                            f"Rollback failed after {type(original).__name__}: {rollback_error}",
                            extra={"operation": "ROLLBACK"},
                        )
                    raise original
                await trans.commit()
                return result
        except _STORE_FAILURES as e:
            raise self._store_failure(e, "TRANSACTION") from e

    # ─── Table helpers ───────────────────────────────────────────

    async def find_by_id(
        self, table: str, id: Any, cache_key: str | None = None, ttl_seconds: int | None = None,
    ) -> dict | None:
        check_identifier(table)
        result = await self.query(
            f"SELECT * FROM {table} WHERE id = :id", {"id": id},
            cache_key or f"{table}:{id}", ttl_seconds,
        )
        return result.first

    async def find_by_field(
        self, table: str, field: str, value: Any,
        cache_key: str | None = None, ttl_seconds: int | None = None,
    ) -> list[dict]:
        check_identifier(table)
        check_identifier(field)
        result = await self.query(
            f"SELECT * FROM {table} WHERE {field} = :value", {"value": value},
            cache_key or f"{table}:{field}:{value}", ttl_seconds,
        )
        return result.rows

    async def insert(self, table: str, data: Mapping[str, Any]) -> dict | None:
        check_identifier(table)
        columns = [check_identifier(c) for c in data]
        if not columns:
            raise ValidationError("Insert requires at least one field", code="EMPTY_INSERT")
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)}) RETURNING *"
        )
        result = await self.query(sql, dict(data))
        await self.invalidate(f"{table}:*")
        return result.first

    async def update(
        self, table: str, id: Any, data: Mapping[str, Any], touch_updated_at: bool = True,
    ) -> dict | None:
        check_identifier(table)
        assignments = [f"{check_identifier(c)} = :{c}" for c in data]
        if touch_updated_at:
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        if not assignments:
            raise ValidationError("Update requires at least one field", code="EMPTY_UPDATE")
        sql = (
            f"UPDATE {table} SET {', '.join(assignments)} "
            f"WHERE id = :_row_id RETURNING *"
        )
        result = await self.query(sql, {**data, "_row_id": id})
        await self.invalidate(f"{table}:*")
        return result.first

    async def delete(self, table: str, id: Any) -> bool:
        check_identifier(table)
        result = await self.query(f"DELETE FROM {table} WHERE id = :id", {"id": id})
        await self.invalidate(f"{table}:*")
        return result.row_count > 0

    async def invalidate(self, pattern: str) -> int:
        return await self.cache.invalidate(pattern)

    # ─── Observability & lifecycle ───────────────────────────────

    def stats(self) -> dict:
        return self.counters.to_dict()

    async def health_check(self) -> dict:
        database_ok = True
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except _STORE_FAILURES as e:
            logger.error(f"Database health check failed: {e}")
            database_ok = False
        return {
            "database": database_ok,
            "cache": await self.cache.ping(),
            "stats": self.stats(),
        }

    async def close(self) -> None:
        await self.engine.dispose()
        await self.cache.close()
