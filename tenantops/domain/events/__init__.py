"""Domain Event definitions.

Represents significant occurrences within the resilience core that the
surrounding application can observe through an injected EventSink.
"""
