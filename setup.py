#!/usr/bin/env python
"""Setup configuration for the PassKey authentication service."""

from setuptools import find_packages, setup

setup(
    name="passkey-auth",
    version="1.0.0",
    description="Passkey, password and MFA authentication service",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.104.1",
        "uvicorn[standard]>=0.24.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "email-validator>=2.0.0",
        "sqlalchemy[asyncio]>=2.0.23",
        "aiosqlite>=0.19.0",
        "asyncpg>=0.29.0",
        "itsdangerous>=2.1.0",
        "fido2>=1.1.0,<2.0",
        "cryptography>=41.0.0",
        "pyotp>=2.9.0",
        "qrcode>=7.4.0",
        "Pillow>=10.0.0",
        "bcrypt>=4.0.0",
        "structlog>=23.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "passkey-auth=passkey_auth.main:main",
        ],
    },
)
