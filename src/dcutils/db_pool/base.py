"""
Base classes for database connection pooling.

A pool hands out connections to the engine's worker threads. Each table
thread holds one connection per side for the duration of a phase, so the
pool's ``max_size`` bounds how many partitions can be read at once.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from queue import Empty, Queue
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram

from dcutils.metrics import get_or_create_metric
from dcutils.tracing import trace_operation

logger = logging.getLogger(__name__)


POOL_CONNECTIONS = get_or_create_metric(
    lambda: Gauge(
        "dc_pool_connections",
        "Connections held by a pool, by state",
        ["database_type", "pool_name", "state"],
    ),
    "dc_pool_connections",
)

POOL_WAITS = get_or_create_metric(
    lambda: Counter(
        "dc_pool_waits_total",
        "Times a connection request had to wait for a free connection",
        ["database_type", "pool_name"],
    ),
    "dc_pool_waits_total",
)

POOL_ERRORS = get_or_create_metric(
    lambda: Counter(
        "dc_pool_errors_total",
        "Connection pool errors",
        ["database_type", "pool_name", "error_type"],
    ),
    "dc_pool_errors_total",
)

POOL_ACQUIRE_SECONDS = get_or_create_metric(
    lambda: Histogram(
        "dc_pool_acquire_seconds",
        "Time to acquire a connection from a pool",
        ["database_type", "pool_name"],
        buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
    ),
    "dc_pool_acquire_seconds",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class PooledConnection:
    """A pooled connection with the bookkeeping used for recycling."""

    connection: Any
    created_at: datetime = field(default_factory=_utcnow)
    last_used: datetime = field(default_factory=_utcnow)
    use_count: int = 0

    def mark_used(self) -> None:
        self.last_used = _utcnow()
        self.use_count += 1


class ConnectionPoolError(Exception):
    """Base exception for connection pool errors."""


class PoolExhaustedError(ConnectionPoolError):
    """Raised when no connection becomes available within the timeout."""


class PoolClosedError(ConnectionPoolError):
    """Raised when attempting to use a closed pool."""


class BaseConnectionPool:
    """
    Thread-safe pool of database connections.

    Subclasses set ``db_type`` and ``driver_error`` and implement
    ``_connect``; the base class checks connections with ``SELECT 1``.
    Connections are opened in
    explicit-transaction mode unless ``autocommit`` is set; callers own
    commit and rollback, and a connection returned with an open
    transaction is rolled back before it is handed out again.
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 10,
        max_idle_time: int = 300,
        max_lifetime: int = 3600,
        health_check_interval: int = 60,
        acquire_timeout: float = 30.0,
        pool_name: str = "default",
        autocommit: bool = False,
    ):
        """
        Args:
            min_size: Minimum number of connections to maintain
            max_size: Maximum number of connections allowed
            max_idle_time: Idle seconds before a connection is recycled
            max_lifetime: Lifetime seconds before a connection is recycled
            health_check_interval: Seconds between background health checks
            acquire_timeout: Seconds to wait for a free connection
            pool_name: Pool label for logs and metrics
            autocommit: Open connections in auto-commit mode
        """
        if min_size < 0 or max_size < 1 or min_size > max_size:
            raise ValueError(
                f"Invalid pool size: min_size={min_size}, max_size={max_size}"
            )

        self.min_size = min_size
        self.max_size = max_size
        self.max_idle_time = timedelta(seconds=max_idle_time)
        self.max_lifetime = timedelta(seconds=max_lifetime)
        self.health_check_interval = health_check_interval
        self.acquire_timeout = acquire_timeout
        self.pool_name = pool_name
        self.autocommit = autocommit

        self._idle: Queue[PooledConnection] = Queue(maxsize=max_size)
        self._all_connections: list[PooledConnection] = []
        self._lock = threading.RLock()
        self._closed = False
        self._stop = threading.Event()

        self._fill_to_minimum()

        self._health_check_thread = threading.Thread(
            target=self._health_check_worker,
            name=f"{pool_name}-health",
            daemon=True,
        )
        self._health_check_thread.start()

        logger.info(
            f"Initialized {self.__class__.__name__} '{pool_name}' "
            f"(min={min_size}, max={max_size}, autocommit={autocommit})"
        )

    # -- dialect hooks --------------------------------------------------

    db_type = "unknown"
    driver_error: type[Exception] | tuple[type[Exception], ...] = Exception

    def _connect(self) -> Any:
        """Open one raw driver connection honouring ``self.autocommit``."""
        raise NotImplementedError

    def _create_connection(self) -> Any:
        with trace_operation(
            "db_connect",
            kind=trace.SpanKind.CLIENT,
            database_type=self.db_type,
            pool_name=self.pool_name,
        ):
            return self._connect()

    def _is_connection_healthy(self, conn: Any) -> bool:
        if conn is None or getattr(conn, "closed", False):
            return False
        try:
            with closing(conn.cursor()) as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            # the check must not leave a transaction open
            if not conn.autocommit:
                conn.rollback()
        except self.driver_error as e:
            logger.debug(f"Health check failed on pool '{self.pool_name}': {e}")
            return False
        return True

    def _close_connection(self, conn: Any) -> None:
        if conn is not None and not getattr(conn, "closed", False):
            conn.close()

    def _reset_connection(self, conn: Any) -> None:
        """Discard any transaction left open by the previous borrower."""
        if not self.autocommit:
            conn.rollback()

    # -- internals ------------------------------------------------------

    def _labels(self) -> dict[str, str]:
        return {"database_type": self.db_type, "pool_name": self.pool_name}

    def _record_error(self, error_type: str) -> None:
        POOL_ERRORS.labels(error_type=error_type, **self._labels()).inc()

    def _open(self) -> PooledConnection | None:
        """Open and register a connection; returns None on failure."""
        try:
            pooled = PooledConnection(connection=self._create_connection())
        except Exception as e:
            logger.error(f"Pool '{self.pool_name}' failed to open a connection: {e}")
            self._record_error("creation")
            return None

        with self._lock:
            self._all_connections.append(pooled)
        return pooled

    def _fill_to_minimum(self) -> None:
        with self._lock:
            needed = self.min_size - len(self._all_connections)
            for _ in range(max(needed, 0)):
                pooled = self._open()
                if pooled is not None:
                    self._idle.put_nowait(pooled)
            self._update_metrics()

    def _is_usable(self, pooled: PooledConnection) -> bool:
        now = _utcnow()
        if now - pooled.created_at > self.max_lifetime:
            logger.debug("Connection exceeded max lifetime, recycling")
            return False
        if now - pooled.last_used > self.max_idle_time:
            logger.debug("Connection exceeded max idle time, recycling")
            return False

        try:
            return self._is_connection_healthy(pooled.connection)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            self._record_error("health_check")
            return False

    def _discard(self, pooled: PooledConnection) -> None:
        try:
            self._close_connection(pooled.connection)
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            with self._lock:
                if pooled in self._all_connections:
                    self._all_connections.remove(pooled)

    def _health_check_worker(self) -> None:
        while not self._stop.wait(self.health_check_interval):
            try:
                self._perform_health_checks()
            except Exception as e:
                logger.error(f"Health check worker error: {e}")

    def _perform_health_checks(self) -> None:
        """Check idle connections, recycle bad ones, restore the minimum."""
        if self._closed:
            return

        checked: list[PooledConnection] = []
        while True:
            try:
                checked.append(self._idle.get_nowait())
            except Empty:
                break

        for pooled in checked:
            if self._is_usable(pooled):
                self._idle.put_nowait(pooled)
            else:
                self._discard(pooled)
                logger.info(f"Recycled unhealthy connection in pool '{self.pool_name}'")

        self._fill_to_minimum()

    def _update_metrics(self) -> None:
        with self._lock:
            total = len(self._all_connections)
            idle = self._idle.qsize()

        POOL_CONNECTIONS.labels(state="idle", **self._labels()).set(idle)
        POOL_CONNECTIONS.labels(state="active", **self._labels()).set(total - idle)

    def _checkout(self) -> PooledConnection:
        deadline = time.monotonic() + self.acquire_timeout
        waited = False

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._record_error("timeout")
                raise PoolExhaustedError(
                    f"No connection available in pool '{self.pool_name}' "
                    f"within {self.acquire_timeout}s"
                )

            pooled: PooledConnection | None = None
            try:
                pooled = self._idle.get_nowait()
            except Empty:
                with self._lock:
                    can_grow = len(self._all_connections) < self.max_size
                if can_grow:
                    pooled = self._open()
                if pooled is None:
                    if not waited:
                        POOL_WAITS.labels(**self._labels()).inc()
                        waited = True
                    try:
                        pooled = self._idle.get(timeout=min(remaining, 0.5))
                    except Empty:
                        continue

            if self._is_usable(pooled):
                return pooled

            self._discard(pooled)

    # -- public API -----------------------------------------------------

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """
        Borrow a connection for the duration of the ``with`` block.

        Raises:
            PoolClosedError: If the pool is closed
            PoolExhaustedError: If no connection is available within the timeout
        """
        if self._closed:
            raise PoolClosedError(f"Connection pool '{self.pool_name}' is closed")

        start = time.monotonic()
        with trace_operation(
            "db_pool_acquire",
            kind=trace.SpanKind.CLIENT,
            database_type=self.db_type,
            pool_name=self.pool_name,
        ):
            pooled = self._checkout()

        pooled.mark_used()
        POOL_ACQUIRE_SECONDS.labels(**self._labels()).observe(time.monotonic() - start)
        self._update_metrics()

        try:
            yield pooled.connection
        finally:
            self._release(pooled)

    def _release(self, pooled: PooledConnection) -> None:
        if self._closed:
            self._discard(pooled)
            return

        try:
            self._reset_connection(pooled.connection)
            self._idle.put_nowait(pooled)
        except Exception as e:
            logger.warning(f"Connection could not be returned to pool: {e}")
            self._discard(pooled)
        self._update_metrics()

    def stats(self) -> dict[str, int]:
        with self._lock:
            total = len(self._all_connections)
        idle = self._idle.qsize()
        return {"total": total, "idle": idle, "active": total - idle}

    def close(self) -> None:
        """Close all connections and stop the health check thread."""
        if self._closed:
            return

        logger.info(f"Closing connection pool '{self.pool_name}'")
        self._closed = True
        self._stop.set()

        with self._lock:
            connections = list(self._all_connections)
        for pooled in connections:
            self._discard(pooled)

        while True:
            try:
                self._idle.get_nowait()
            except Empty:
                break

        self._update_metrics()
        logger.info(f"Connection pool '{self.pool_name}' closed")

    def __enter__(self) -> "BaseConnectionPool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
