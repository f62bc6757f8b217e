from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Mapping, cast

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette import status as http_status

from revision_api.api import include_api_routes
from revision_api.config.settings import Settings, get_settings
from revision_api.core.logging import configure_logging
from revision_api.db.session import lifespan_context
from revision_api.domain.errors import GenerationFailure, LookupFailure, ValidationFailure
from revision_api.domain.schemas.common import ErrorBody, ErrorEnvelope

HTTP_STATUS_MESSAGES: Mapping[int, str] = cast(
    Mapping[int, str],
    getattr(http_status, "HTTP_STATUS_CODES", {}),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    async with lifespan_context():
        yield


def _error_response(
    status_code: int, message: str, details: dict[str, Any] | None = None
) -> JSONResponse:
    payload = ErrorEnvelope(
        error=ErrorBody(code=status_code, message=message, details=details)
    ).model_dump(mode="json")
    return JSONResponse(status_code=status_code, content=payload)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory for the revision API."""

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        lifespan=_lifespan,
    )

    if settings.environment == "production" and (
        not settings.cors_origins or settings.cors_origins == ["*"]
    ):
        raise RuntimeError("Production deployments must configure explicit CORS origins.")

    if settings.cors_origins:
        from fastapi.middleware.cors import CORSMiddleware

        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    include_api_routes(app)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        message = (
            exc.detail
            if isinstance(exc.detail, str)
            else HTTP_STATUS_MESSAGES.get(exc.status_code, "Error")
        )
        details = exc.detail if isinstance(exc.detail, dict) else None
        return _error_response(exc.status_code, message, details)

    @app.exception_handler(ValidationFailure)
    async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
        return _error_response(http_status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(LookupFailure)
    async def lookup_failure_handler(request: Request, exc: LookupFailure) -> JSONResponse:
        logger.error("Revision lookup failed", extra={"reason": str(exc), "context": exc.context})
        return _error_response(
            http_status.HTTP_503_SERVICE_UNAVAILABLE,
            str(exc),
            {key: str(value) for key, value in exc.context.items()} or None,
        )

    @app.exception_handler(GenerationFailure)
    async def generation_failure_handler(request: Request, exc: GenerationFailure) -> JSONResponse:
        details = {"scope_key": exc.scope_key} if exc.scope_key else None
        return _error_response(http_status.HTTP_502_BAD_GATEWAY, str(exc), details)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:  # pragma: no cover
        return _error_response(
            http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            {"reason": str(exc)},
        )

    return app


app = create_app()


__all__ = ["app", "create_app"]
