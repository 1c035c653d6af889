"""Keyed pool of authenticated tenant connections.

Reuses one live session per (tenant, endpoint). Reuse is gated by a
liveness probe, idle entries go stale and are evicted by the next acquire
of any key, and the pool never holds more than ``max_connections``
entries: after every insert the least recently used entries are evicted
synchronously.

Connecting and probing are remote calls, so both run through the
OperationExecutor and get the same classification and retry treatment as
any other operation.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from tenantops.domain.events.resilience_events import (
    ConnectionEstablished, ConnectionEvicted, ConnectionReused, DomainEvent,
)
from tenantops.domain.interfaces.event_sink import EventSink
from tenantops.domain.models.common import AuthMethod, Endpoint, TenantIdentity
from tenantops.domain.models.connection import Connection, ConnectionKey, ConnectionState
from tenantops.infrastructure.resilience.cancellation import CancellationToken, NEVER_CANCELLED
from tenantops.infrastructure.resilience.executor import OperationExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_IDLE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_CONNECT_MAX_RETRIES = 3
_LOCK_POLL_SECONDS = 0.05

ConnectBody = Callable[[ConnectionKey, Dict[str, Any]], Any]
ProbeBody = Callable[[Any], Any]
DisconnectBody = Callable[[Any], None]
LeaseId = Tuple[ConnectionKey, int]


def _lease_id(connection: Connection) -> LeaseId:
    return connection.key, connection.generation


class ConnectionPool:
    """Thread-safe pool of live connections keyed by ConnectionKey.

    Two locks are involved: one lock per key serialises the
    lookup -> probe -> connect sequence for that key (so concurrent acquires
    create at most one connection), and the map lock guards the entry dict
    itself. Key locks are always taken before the map lock.
    """

    def __init__(
        self,
        executor: OperationExecutor,
        connect: ConnectBody,
        probe: Optional[ProbeBody] = None,
        disconnect: Optional[DisconnectBody] = None,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        connect_max_retries: int = DEFAULT_CONNECT_MAX_RETRIES,
        event_sink: Optional[EventSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the ConnectionPool.

        Args:
            executor: Runs connect and probe bodies with classified retries.
            connect: Creates a session: ``connect(key, auth_params) -> session``.
            probe: Cheap liveness check: ``probe(session) -> truthy``. None disables probing.
            disconnect: Closes an evicted session. Errors are logged, not raised.
            max_connections: Capacity bound of the pool.
            idle_timeout: Seconds of inactivity after which an entry is stale.
            connect_max_retries: Retries for connection establishment.
            event_sink: Receives pool events; defaults to the executor's sink.
            clock: Monotonic clock for created/last-used timestamps.
        """
        if max_connections < 1:
            raise ValueError(f"max_connections must be >= 1, got {max_connections}")
        if idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be > 0, got {idle_timeout}")
        self.executor = executor
        self._connect_body = connect
        self._probe_body = probe
        self._disconnect_body = disconnect
        self.max_connections = max_connections
        self.idle_timeout = idle_timeout
        self.connect_max_retries = connect_max_retries
        self.event_sink = event_sink or executor.event_sink
        self._clock = clock

        self._lock = threading.Lock()
        self._entries: Dict[ConnectionKey, Connection] = {}
        self._key_locks: Dict[ConnectionKey, threading.Lock] = {}
        self._generations: Dict[ConnectionKey, int] = {}
        self._leases: Dict[LeaseId, int] = {}      # (key, generation) -> active borrows
        self._pending_close: Dict[LeaseId, Connection] = {}
        self._stats = {"created": 0, "reused": 0, "evicted": 0, "probe_failures": 0}
        self._closed = False

        logger.info(
            f"ConnectionPool initialized: max_connections={max_connections}, "
            f"idle_timeout={idle_timeout}s, connect_max_retries={connect_max_retries}, "
            f"probe={'on' if probe else 'off'}"
        )

    # --- Public API ---

    def acquire(
        self,
        tenant: TenantIdentity,
        endpoint: Endpoint,
        *,
        auth_method: AuthMethod = AuthMethod("interactive"),
        auth_params: Optional[Dict[str, Any]] = None,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Connection:
        """Returns a live connection for (tenant, endpoint), creating one if needed.

        Args:
            tenant: Tenant identity.
            endpoint: Target endpoint.
            auth_method: Authentication method tag recorded on new connections.
            auth_params: Parameters handed to the connect body.
            force: Discard any existing connection and establish a fresh one.
            cancel_token: Aborts waiting, probing and connect retries.

        Raises:
            ClassifiedError: If establishing the connection exhausts its retries.
            OperationCancelledError: If the token is cancelled.
            RuntimeError: If the pool has been closed.
        """
        return self._acquire(
            ConnectionKey(tenant, endpoint), auth_method, auth_params, force, cancel_token, lease=False
        )

    @contextmanager
    def borrow(
        self,
        tenant: TenantIdentity,
        endpoint: Endpoint,
        *,
        auth_method: AuthMethod = AuthMethod("interactive"),
        auth_params: Optional[Dict[str, Any]] = None,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[Connection]:
        """Acquires a connection for the duration of one operation.

        The lease is taken in the same critical section that hands out the
        entry, so a borrowed connection evicted meanwhile is only closed once
        the borrow ends.
        """
        connection = self._acquire(
            ConnectionKey(tenant, endpoint), auth_method, auth_params, force, cancel_token, lease=True
        )
        lease = _lease_id(connection)
        try:
            yield connection
        finally:
            close_now = None
            with self._lock:
                remaining = self._leases.get(lease, 1) - 1
                if remaining > 0:
                    self._leases[lease] = remaining
                else:
                    self._leases.pop(lease, None)
                    close_now = self._pending_close.pop(lease, None)
            if close_now is not None:
                self._close_session(close_now)

    def get(self, tenant: TenantIdentity, endpoint: Endpoint) -> Optional[Connection]:
        """Returns the pooled entry without probing or bumping it."""
        with self._lock:
            return self._entries.get(ConnectionKey(tenant, endpoint))

    def disconnect(self, tenant: TenantIdentity, endpoint: Endpoint) -> bool:
        """Evicts the connection for (tenant, endpoint). Returns False if none was pooled."""
        key = ConnectionKey(tenant, endpoint)
        with self._lock:
            existing = self._entries.get(key)
        if existing is None:
            return False
        return self._evict(key, existing, "explicit")

    def disconnect_all(self) -> int:
        """Evicts every pooled connection. Returns how many were evicted."""
        with self._lock:
            victims = list(self._entries.items())
            self._entries.clear()
            for _, connection in victims:
                connection.state = ConnectionState.EVICTED
            self._stats["evicted"] += len(victims)
        for key, connection in victims:
            self._after_evict(key, connection, "explicit")
        if victims:
            logger.info(f"Disconnected {len(victims)} pooled connection(s)")
        return len(victims)

    def sweep(self) -> int:
        """Evicts stale entries, then LRU entries until within capacity.

        Returns:
            The number of evicted connections.
        """
        stale = self._take_stale()
        with self._lock:
            most_recent = max(self._entries.values(), key=lambda c: c.last_used_at, default=None)
            victims = self._select_over_capacity(protect=most_recent.key if most_recent else None)
        self._retire(stale, "stale")
        self._retire(victims, "capacity")
        evicted = len(stale) + len(victims)
        if evicted:
            logger.info(f"Pool sweep evicted {evicted} connection(s) ({len(stale)} stale)")
        return evicted

    def close(self) -> None:
        """Evicts everything and refuses further acquires."""
        with self._lock:
            self._closed = True
        self.disconnect_all()
        with self._lock:
            self._key_locks.clear()
            self._generations.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_connections": self.max_connections,
                "keys": [str(k) for k in self._entries],
                **self._stats,
            }

    def keys(self) -> List[ConnectionKey]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        if isinstance(key, tuple) and not isinstance(key, ConnectionKey):
            key = ConnectionKey(*key)
        with self._lock:
            return key in self._entries

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- Internals ---

    def _acquire(
        self,
        key: ConnectionKey,
        auth_method: AuthMethod,
        auth_params: Optional[Dict[str, Any]],
        force: bool,
        cancel_token: Optional[CancellationToken],
        lease: bool,
    ) -> Connection:
        token = cancel_token or NEVER_CANCELLED

        with self._key_locked(key, token):
            self._ensure_open()
            self._retire(self._take_stale(exclude=key), "stale")
            existing = self.get(key.tenant, key.endpoint)
            if existing is not None:
                if force:
                    logger.info(f"Forced refresh of connection {key}")
                    self._evict(key, existing, "forced")
                elif self._is_stale(existing):
                    logger.info(f"Connection {key} idle for {existing.idle_seconds(self._clock()):.0f}s, refreshing")
                    existing.state = ConnectionState.STALE
                    self._evict(key, existing, "stale")
                elif self._probe_passes(existing, token):
                    with self._lock:
                        if self._entries.get(key) is existing:
                            existing.last_used_at = self._clock()
                            self._stats["reused"] += 1
                            if lease:
                                self._take_lease(existing)
                            reused = True
                        else:
                            reused = False  # Evicted by a capacity sweep during the probe
                    if reused:
                        self._emit(ConnectionReused(identity=str(key), generation=existing.generation))
                        return existing
                else:
                    with self._lock:
                        self._stats["probe_failures"] += 1
                    logger.warning(f"Liveness probe failed for {key}, re-establishing connection")
                    self._evict(key, existing, "probe_failed")

            connection = self._establish(key, auth_method, auth_params or {}, token)
            with self._lock:
                self._entries[key] = connection
                if lease:
                    self._take_lease(connection)
                victims = self._select_over_capacity(protect=key)
            self._retire(victims, "capacity")
            return connection

    @contextmanager
    def _key_locked(self, key: ConnectionKey, token: CancellationToken) -> Iterator[None]:
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        # Poll so a cancelled caller does not wait behind another thread's connect
        while not key_lock.acquire(timeout=_LOCK_POLL_SECONDS):
            token.raise_if_cancelled()
        try:
            yield
        finally:
            key_lock.release()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("ConnectionPool is closed")

    def _is_stale(self, connection: Connection) -> bool:
        return connection.idle_seconds(self._clock()) > self.idle_timeout

    def _probe_passes(self, connection: Connection, token: CancellationToken) -> bool:
        if self._probe_body is None:
            return True
        probe = self._probe_body
        result = self.executor.execute(
            lambda: probe(connection.session),
            name="probe",
            identity=str(connection.key),
            max_retries=0,
            suppress=True,
            cancel_token=token,
        )
        return result.succeeded and bool(result.value)

    def _establish(
        self, key: ConnectionKey, auth_method: AuthMethod, auth_params: Dict[str, Any], token: CancellationToken
    ) -> Connection:
        connect = self._connect_body

        def connect_once() -> Any:
            session = connect(key, dict(auth_params))
            if session is None:
                raise ConnectionError(f"Connect body returned no session for {key}")
            return session

        result = self.executor.execute(
            connect_once,
            name="connect",
            identity=str(key),
            max_retries=self.connect_max_retries,
            cancel_token=token,
        )
        now = self._clock()
        with self._lock:
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            self._stats["created"] += 1
        connection = Connection(
            key=key,
            session=result.value,
            auth_method=auth_method,
            created_at=now,
            last_used_at=now,
            generation=generation,
        )
        logger.info(f"Connected to {key} (generation {generation}, {result.attempt_count} attempt(s))")
        self._emit(ConnectionEstablished(
            identity=str(key), generation=generation, auth_method=str(auth_method),
            attempts=result.attempt_count,
        ))
        return connection

    def _take_lease(self, connection: Connection) -> None:
        """Caller holds the map lock."""
        lease = _lease_id(connection)
        self._leases[lease] = self._leases.get(lease, 0) + 1

    def _take_stale(self, exclude: Optional[ConnectionKey] = None) -> List[Tuple[ConnectionKey, Connection]]:
        """Removes entries idle longer than idle_timeout from the map."""
        now = self._clock()
        with self._lock:
            stale = [
                (k, c) for k, c in self._entries.items()
                if k != exclude and c.idle_seconds(now) > self.idle_timeout
            ]
            for key, connection in stale:
                del self._entries[key]
                connection.state = ConnectionState.STALE
            self._stats["evicted"] += len(stale)
        return stale

    def _select_over_capacity(self, protect: Optional[ConnectionKey]) -> List[Tuple[ConnectionKey, Connection]]:
        """Removes LRU entries until within capacity. Caller holds the map lock."""
        victims: List[Tuple[ConnectionKey, Connection]] = []
        while len(self._entries) > self.max_connections:
            candidates = [(k, c) for k, c in self._entries.items() if k != protect]
            if not candidates:
                break
            # Prefer entries nobody is borrowing right now, then least recently used
            key, connection = min(
                candidates, key=lambda kc: (_lease_id(kc[1]) in self._leases, kc[1].last_used_at)
            )
            del self._entries[key]
            connection.state = ConnectionState.EVICTED
            self._stats["evicted"] += 1
            victims.append((key, connection))
        return victims

    def _evict(self, key: ConnectionKey, connection: Connection, reason: str) -> bool:
        with self._lock:
            if self._entries.get(key) is not connection:
                return False
            del self._entries[key]
            connection.state = ConnectionState.EVICTED
            self._stats["evicted"] += 1
        self._after_evict(key, connection, reason)
        return True

    def _retire(self, victims: List[Tuple[ConnectionKey, Connection]], reason: str) -> None:
        for key, connection in victims:
            if reason == "capacity":
                logger.info(f"Evicting least recently used connection {key} (pool over capacity)")
            else:
                logger.info(f"Evicting idle connection {key} ({reason})")
            self._after_evict(key, connection, reason)

    def _after_evict(self, key: ConnectionKey, connection: Connection, reason: str) -> None:
        connection.state = ConnectionState.EVICTED
        self._emit(ConnectionEvicted(identity=str(key), generation=connection.generation, reason=reason))
        lease = _lease_id(connection)
        with self._lock:
            if lease in self._leases:
                self._pending_close[lease] = connection
                return
        self._close_session(connection)

    def _close_session(self, connection: Connection) -> None:
        if self._disconnect_body is None:
            return
        try:
            self._disconnect_body(connection.session)
        except Exception as e:
            logger.warning(f"Error while closing session for {connection.key}: {e}", exc_info=True)

    def _emit(self, event: DomainEvent) -> None:
        try:
            self.event_sink.emit(event)
        except Exception as e:
            logger.error(f"Event sink failed to publish {event.name}: {e}", exc_info=True)
