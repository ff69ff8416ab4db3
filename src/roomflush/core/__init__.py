"""Core infrastructure: configuration, logging and rate limiting."""
