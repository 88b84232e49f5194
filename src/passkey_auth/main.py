"""FastAPI application for the passkey authentication service.

This module creates and configures the application with its routers,
middleware, exception handlers and lifespan tasks.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from passkey_auth.api import auth_endpoints, health, mfa_endpoints
from passkey_auth.config import Settings, get_settings
from passkey_auth.services.challenge_service import ChallengeSweeper
from passkey_auth.services.notification_service import CodeSender
from passkey_auth.storage.provider import StorageProvider
from passkey_auth.utils.exceptions import PasskeyAuthException
from passkey_auth.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def passkey_auth_exception_handler(
    request: Request, exc: PasskeyAuthException
) -> JSONResponse:
    """Convert typed service errors into JSON responses."""
    logger.warning(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies as invalid input."""
    errors = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "Invalid request"
    logger.info("request_validation_failed", path=request.url.path, errors=len(errors))
    return JSONResponse(
        status_code=400,
        content={"message": message, "code": "INVALID_INPUT", "errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Hide internals of unexpected failures."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"message": "Internal server error", "code": "INTERNAL_ERROR"},
    )


def create_app(
    settings: Optional[Settings] = None,
    storage_provider: Optional[StorageProvider] = None,
    code_sender: Optional[CodeSender] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Application settings, defaults to the cached settings
        storage_provider: Storage backend, defaults to the configured one
        code_sender: Delivery channel for email/SMS codes
        start_sweeper: Run the expired-challenge sweeper during the lifespan
    """
    settings = settings or get_settings()
    setup_logging()

    provider = storage_provider or StorageProvider.from_settings(settings)
    sweeper = ChallengeSweeper(provider, settings.challenge_sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler."""
        logger.info(
            "application_starting",
            app_name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
        )
        await provider.startup()
        if start_sweeper:
            sweeper.start()

        yield

        logger.info("application_stopping")
        if start_sweeper:
            await sweeper.stop()
        await provider.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Passkey, password and MFA authentication service",
        docs_url=f"{settings.api_prefix}/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url=f"{settings.api_prefix}/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.storage_provider = provider
    app.state.code_sender = code_sender or CodeSender()
    app.state.challenge_sweeper = sweeper

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=3600,
    )

    # Session
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.session_https_only,
    )

    app.add_exception_handler(PasskeyAuthException, passkey_auth_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(auth_endpoints.router, prefix=settings.api_prefix)
    app.include_router(mfa_endpoints.router, prefix=settings.api_prefix)

    return app


def main() -> Any:
    """Run the service with uvicorn."""
    import uvicorn  # pylint: disable=import-outside-toplevel

    settings = get_settings()
    uvicorn.run(
        "passkey_auth.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=5000,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
