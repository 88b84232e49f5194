"""HTTP API for the passkey authentication service."""
