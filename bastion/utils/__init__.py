"""Shared utilities: logging, command execution, validation, caching, time."""
