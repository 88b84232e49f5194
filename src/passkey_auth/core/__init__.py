"""Core infrastructure for the passkey authentication service."""
