"""Pure domain layer: value objects, state tables, DTOs. Zero I/O."""
