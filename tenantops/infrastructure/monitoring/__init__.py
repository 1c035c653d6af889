"""Logging setup and structured event sinks."""
