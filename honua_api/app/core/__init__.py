"""Core infrastructure: configuration, database, security and logging."""
