"""Pure domain layer: value objects, workflow tables, clock, DTOs. Zero I/O."""
