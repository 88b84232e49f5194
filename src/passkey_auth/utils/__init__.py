"""Shared utilities: logging, exceptions, encoding and clock helpers."""
