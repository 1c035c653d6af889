"""Domain layer: value objects, events and interfaces of the resilience core."""
