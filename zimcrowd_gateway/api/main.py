"""FastAPI application factory"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from zimcrowd_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from zimcrowd_gateway.api.v1.schemas import ErrorResponse
from zimcrowd_gateway.api.v1 import (
    coverage,
    direct_loans,
    fees,
    installments,
    jobs,
    primary_market,
    secondary_market,
    wallets,
)
from zimcrowd_gateway.domain.exceptions import (
    AuthorizationError,
    DomainException,
    ExpiredError,
    InsufficientFundsError,
    LimitExceededError,
    NotFoundError,
    StateConflictError,
    UnauthenticatedError,
    ValidationError,
)
from zimcrowd_gateway.infrastructure.observability.logging import setup_logging
from zimcrowd_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)

# Most specific first; subclasses inherit their family's status
ERROR_STATUS_CODES = (
    (UnauthenticatedError, 401),
    (ValidationError, 422),
    (NotFoundError, 404),
    (StateConflictError, 409),
    (AuthorizationError, 403),
    (InsufficientFundsError, 402),
    (LimitExceededError, 422),
    (ExpiredError, 410),
)


def status_for(exc: DomainException) -> int:
    for exc_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Expected business outcomes become structured error responses"""
    status_code = status_for(exc)
    logger.info(
        f"Request refused: {exc.message}",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "error": exc.code,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.code, message=exc.message, details=exc.details).model_dump(mode="json"),
    )


async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unexpected error: {exc}",
        exc_info=exc,
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "path": request.url.path},
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="internal_error", message="Internal server error").model_dump(mode="json"),
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="ZimCrowd Gateway",
        description="Peer-to-peer lending marketplace settlement service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(Exception, unexpected_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(wallets.router, prefix="/v1", tags=["wallets"])
    app.include_router(fees.router, prefix="/v1", tags=["fees"])
    app.include_router(primary_market.router, prefix="/v1", tags=["primary-market"])
    app.include_router(secondary_market.router, prefix="/v1", tags=["secondary-market"])
    app.include_router(installments.router, prefix="/v1", tags=["installments"])
    app.include_router(coverage.router, prefix="/v1", tags=["coverage"])
    app.include_router(direct_loans.router, prefix="/v1", tags=["direct-loans"])
    app.include_router(jobs.router, prefix="/v1", tags=["jobs"])

    return app


app = create_app()
