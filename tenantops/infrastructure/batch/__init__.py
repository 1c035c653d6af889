"""Throttled batch orchestration.

Bounded Context: Bulk Provisioning
"""
