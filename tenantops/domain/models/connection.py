"""Pooled connection value objects."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .common import AuthMethod, Endpoint, TenantIdentity


class ConnectionState(str, Enum):
    LIVE = "Live"
    STALE = "Stale"          # Idle longer than the configured threshold
    EVICTED = "Evicted"


@dataclass(frozen=True)
class ConnectionKey:
    """Composite identity of a pooled connection."""

    tenant: TenantIdentity
    endpoint: Endpoint

    def __str__(self) -> str:
        return f"{self.tenant}@{self.endpoint}"


@dataclass
class Connection:
    """An authenticated session owned by the pool.

    Callers only ever borrow a Connection for the duration of one operation;
    the session handle is opaque to the core.
    """

    key: ConnectionKey
    session: Any
    auth_method: AuthMethod
    created_at: float
    last_used_at: float
    generation: int
    state: ConnectionState = ConnectionState.LIVE

    @property
    def is_live(self) -> bool:
        return self.state is ConnectionState.LIVE

    def idle_seconds(self, now: float) -> float:
        return max(0.0, now - self.last_used_at)
