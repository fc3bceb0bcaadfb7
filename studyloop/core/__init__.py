"""Shared infrastructure: logging setup and the exception taxonomy."""
