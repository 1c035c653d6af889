"""Core application layer: composition of the resilience services."""
