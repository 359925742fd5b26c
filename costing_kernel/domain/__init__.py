"""Pure domain layer: value objects, clock, DTOs and events."""
