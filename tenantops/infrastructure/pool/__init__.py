"""Connection pooling.

Per-tenant reuse of authenticated sessions with liveness probing,
staleness eviction and a capacity bound.
Bounded Context: Connection Management
"""
