"""Core infrastructure: config, database, errors, rate limiting."""
