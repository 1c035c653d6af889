"""API Resilience Implementations.

Contains the error classifier, the backoff policy, cancellation tokens and
the operation executor that runs remote calls with classified retries.
Bounded Context: API Resilience
"""
