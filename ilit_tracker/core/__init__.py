"""Pure domain logic: no file, database or logging access."""
