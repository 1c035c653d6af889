"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like tenant identities, endpoints
and batch item keys, ensuring consistency across the resilience core.
"""

from typing import NewType

# === Connection Context ===
TenantIdentity = NewType("TenantIdentity", str)    # e.g. 'contoso' or a tenant id
Endpoint = NewType("Endpoint", str)                # e.g. 'https://contoso-admin.example.com'
AuthMethod = NewType("AuthMethod", str)            # 'interactive', 'certificate', 'device_code'

# === Batch Context ===
ItemKey = NewType("ItemKey", str)                  # Caller supplied key, e.g. a site title
