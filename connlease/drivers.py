"""Driver/transport layer producing connection and statement handles."""

from __future__ import annotations

import asyncio
import concurrent.futures
from dataclasses import dataclass
import itertools
import logging
import threading
import time
from typing import Any, Coroutine, Iterable, Protocol, TypeVar, runtime_checkable

import asyncpg

from .errors import ConnectionError, ConnleaseError
from .models import Credentials, Endpoint

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class QueryExecutionError(ConnleaseError):
    """Raised when a statement fails to execute."""


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized output of a statement."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str
    elapsed_ms: int
    row_count: int | None = None


class Statement(Protocol):
    def execute(self, sql: str) -> QueryResult: ...


class PreparedStatement(Protocol):
    sql: str

    def execute(self, *args: object) -> QueryResult: ...


@runtime_checkable
class ConnectionHandle(Protocol):
    """Live transport connection as handed out by a driver."""

    def create_statement(self) -> Statement:
        """Return a statement object bound to this connection."""

    def prepare_statement(self, sql: str) -> PreparedStatement:
        """Prepare ``sql`` on the server and return the prepared statement."""


@runtime_checkable
class Driver(Protocol):
    """Protocol implemented by transport drivers."""

    def connect(self, endpoint: Endpoint, credentials: Credentials) -> ConnectionHandle:
        """Perform the handshake and return a live handle."""

    def close(self, handle: ConnectionHandle) -> None:
        """Close ``handle``; callers treat failures as ignorable."""


class AsyncpgDriver:
    """Synchronous driver that talks to PostgreSQL via asyncpg.

    asyncpg is coroutine based, so the driver owns a private event loop on a
    daemon thread and blocks the caller until each call completes.
    """

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        self._connect_timeout = connect_timeout
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="connlease-asyncpg-driver",
            daemon=True,
        )
        self._loop_thread.start()

    def connect(self, endpoint: Endpoint, credentials: Credentials) -> AsyncpgConnectionHandle:
        try:
            conn = self.run(asyncpg.connect(**self._connect_kwargs(endpoint, credentials)))
        except Exception as exc:
            raise ConnectionError(f"Failed to connect to {endpoint}: {exc}") from exc
        LOG.debug("Opened asyncpg connection", extra={"endpoint": endpoint.descriptor})
        return AsyncpgConnectionHandle(self, conn)

    def close(self, handle: ConnectionHandle) -> None:
        if not isinstance(handle, AsyncpgConnectionHandle):
            raise TypeError(f"Cannot close foreign handle {handle!r}")
        conn = handle.raw
        try:
            self.run(conn.close(timeout=self._connect_timeout), timeout=self._connect_timeout)
        except Exception as exc:
            # A half-open socket never answers the graceful close.
            LOG.debug("Graceful close failed; terminating", extra={"error": str(exc)})
            self.run(_terminate(conn))

    def run(self, coro: Coroutine[Any, Any, T], *, timeout: float | None = None) -> T:
        """Run ``coro`` on the driver loop and wait for its result."""

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    @property
    def closed(self) -> bool:
        return self._loop.is_closed()

    def shutdown(self) -> None:
        """Stop the background event loop and close it. Safe to call repeatedly."""

        if self._loop.is_closed():
            return
        if self._loop_thread.is_alive():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._loop_thread.join(timeout=1)
        if not self._loop_thread.is_alive():
            self._loop.close()

    def __del__(self) -> None:  # pragma: no cover - best effort cleanup
        try:
            self.shutdown()
        except Exception:
            pass

    def _connect_kwargs(self, endpoint: Endpoint, credentials: Credentials) -> dict[str, object]:
        return {
            "host": endpoint.host,
            "port": endpoint.port,
            "database": endpoint.database,
            "user": credentials.username,
            "password": credentials.password,
            "timeout": self._connect_timeout,
        }


class AsyncpgConnectionHandle:
    """Connection handle wrapping an ``asyncpg.Connection``."""

    def __init__(self, driver: AsyncpgDriver, conn: asyncpg.Connection) -> None:
        self._driver = driver
        self._conn = conn

    @property
    def raw(self) -> asyncpg.Connection:
        return self._conn

    def is_closed(self) -> bool:
        return self._conn.is_closed()

    def create_statement(self) -> AsyncpgStatement:
        return AsyncpgStatement(self._driver, self._conn)

    def prepare_statement(self, sql: str) -> AsyncpgPreparedStatement:
        prepared = self._driver.run(self._conn.prepare(sql))
        return AsyncpgPreparedStatement(self._driver, sql, prepared)


class AsyncpgStatement:
    """Runs ad-hoc SQL on the owning connection."""

    def __init__(self, driver: AsyncpgDriver, conn: asyncpg.Connection) -> None:
        self._driver = driver
        self._conn = conn

    def execute(self, sql: str) -> QueryResult:
        statement = sql.strip()
        if not statement:
            raise QueryExecutionError("Provide SQL to execute.")
        return self._driver.run(self._execute(statement))

    async def _execute(self, statement: str) -> QueryResult:
        started = time.perf_counter()
        try:
            if _returns_rows(statement):
                records = await self._conn.fetch(statement)
                columns, rows = _records_to_rows(records)
                status = f"{len(rows)} row(s)"
                row_count: int | None = len(rows)
            else:
                status = await self._conn.execute(statement)
                columns, rows, row_count = (), (), None
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc
        return QueryResult(
            columns=columns,
            rows=rows,
            status=status,
            elapsed_ms=_elapsed_ms(started),
            row_count=row_count,
        )


class AsyncpgPreparedStatement:
    """Server-side prepared statement bound to the owning connection."""

    def __init__(self, driver: AsyncpgDriver, sql: str, prepared: Any) -> None:
        self._driver = driver
        self.sql = sql
        self._prepared = prepared

    def execute(self, *args: object) -> QueryResult:
        return self._driver.run(self._execute(args))

    async def _execute(self, args: tuple[object, ...]) -> QueryResult:
        started = time.perf_counter()
        try:
            records = await self._prepared.fetch(*args)
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc
        columns, rows = _records_to_rows(records)
        return QueryResult(
            columns=columns,
            rows=rows,
            status=self._prepared.get_statusmsg() or "OK",
            elapsed_ms=_elapsed_ms(started),
            row_count=len(rows) if columns else None,
        )


class DemoDriver:
    """In-memory driver for local runs without a server."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.connects = 0
        self.closes = 0

    def connect(self, endpoint: Endpoint, credentials: Credentials) -> DemoConnectionHandle:
        self.connects += 1
        return DemoConnectionHandle(next(self._ids), endpoint)

    def close(self, handle: ConnectionHandle) -> None:
        self.closes += 1
        if isinstance(handle, DemoConnectionHandle):
            handle.closed = True


class DemoConnectionHandle:
    """Fake connection that answers every statement with one row."""

    def __init__(self, ident: int, endpoint: Endpoint) -> None:
        self.ident = ident
        self.endpoint = endpoint
        self.closed = False

    def __repr__(self) -> str:
        return f"DemoConnectionHandle(ident={self.ident}, endpoint={self.endpoint.descriptor!r})"

    def create_statement(self) -> DemoStatement:
        return DemoStatement(self)

    def prepare_statement(self, sql: str) -> DemoPreparedStatement:
        return DemoPreparedStatement(self, sql)


class DemoStatement:
    def __init__(self, handle: DemoConnectionHandle) -> None:
        self._handle = handle

    def execute(self, sql: str) -> QueryResult:
        if not sql.strip():
            raise QueryExecutionError("Provide SQL to execute.")
        return _demo_result(self._handle)


class DemoPreparedStatement:
    def __init__(self, handle: DemoConnectionHandle, sql: str) -> None:
        self._handle = handle
        self.sql = sql

    def execute(self, *args: object) -> QueryResult:
        return _demo_result(self._handle)


def _demo_result(handle: DemoConnectionHandle) -> QueryResult:
    if handle.closed:
        raise QueryExecutionError("Connection is closed.")
    return QueryResult(
        columns=("connection",),
        rows=((handle.ident,),),
        status=f"Demo result for {handle.endpoint.database}",
        elapsed_ms=0,
        row_count=1,
    )


async def _terminate(conn: asyncpg.Connection) -> None:
    conn.terminate()

def _returns_rows(statement: str) -> bool:
    token = statement.lstrip().split(None, 1)
    if not token:
        return False
    head = token[0].lower()
    return head in {"select", "with", "show", "values", "table"}


def _records_to_rows(records: Iterable[Any]) -> tuple[tuple[str, ...], tuple[tuple[object, ...], ...]]:
    rows: list[tuple[object, ...]] = []
    keys: tuple[Any, ...] = ()
    for record in records:
        if not keys:
            keys = tuple(record.keys()) if hasattr(record, "keys") else tuple(range(len(record)))
        if not keys:
            continue
        rows.append(tuple(record[key] for key in keys))
    return tuple(str(key) for key in keys), tuple(rows)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "AsyncpgConnectionHandle",
    "AsyncpgDriver",
    "AsyncpgPreparedStatement",
    "AsyncpgStatement",
    "ConnectionHandle",
    "DemoConnectionHandle",
    "DemoDriver",
    "Driver",
    "PreparedStatement",
    "QueryExecutionError",
    "QueryResult",
    "Statement",
]
