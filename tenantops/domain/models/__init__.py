"""Domain value objects for the resilience core."""
