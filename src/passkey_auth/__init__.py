"""Passwordless (WebAuthn/passkey) and password authentication service.

The package bundles the WebAuthn ceremony engine, the challenge lifecycle,
the MFA engine and the FastAPI surface that sequences them.
"""

__version__ = "1.0.0"
