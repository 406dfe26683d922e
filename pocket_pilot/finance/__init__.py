"""Business rules that do not touch Flask; callers pass ``today`` explicitly."""
