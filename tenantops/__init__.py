"""tenantops: resilience and concurrency core for tenant provisioning.

Provides error classification, retry with backoff, pooled tenant
connections and throttled batch orchestration.
"""

__version__ = "0.1.0"
