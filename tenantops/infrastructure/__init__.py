"""Infrastructure Layer.

Contains the concrete implementations of the resilience core: error
classification, backoff, the operation executor, the connection pool,
batch orchestration, configuration, logging and console rendering.
"""
