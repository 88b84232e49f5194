"""ASGI entry point for the PassKey authentication service.

Run with ``uvicorn app:app`` or the ``passkey-auth`` console script.
"""

from passkey_auth.main import create_app, main

app = create_app()

if __name__ == "__main__":
    main()
