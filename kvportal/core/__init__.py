"""Core module - configuration, database, errors and logging."""
