"""Pure domain primitives: clock, workflow value objects, validation."""
