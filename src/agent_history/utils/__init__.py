"""Shared utilities: logging, errors, configuration and validation."""
