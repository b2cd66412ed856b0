"""
Bazaar API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import (
    ConcurrencyConflictError,
    ExternalGatewayError,
    InvalidStateError,
    MarketplaceError,
    NoFulfillableLocationError,
    NotFoundError,
    NoUnpaidCommissionsError,
    ValidationError,
    WebhookSignatureError,
)

settings = get_settings()
logger = structlog.get_logger()

# Most specific first; first isinstance match wins.
ERROR_STATUS = [
    (WebhookSignatureError, 400),
    (ValidationError, 422),
    (NotFoundError, 404),
    (NoUnpaidCommissionsError, 409),
    (ConcurrencyConflictError, 409),
    (InvalidStateError, 409),
    (NoFulfillableLocationError, 422),
    (ExternalGatewayError, 502),
]


def status_for(exc: MarketplaceError) -> int:
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Bazaar API starting up", version=settings.app_version, env=settings.app_env)
    yield
    logger.info("Bazaar API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Multi-vendor marketplace core: cart splitting, commissions, fulfillment routing and payouts",
    lifespan=lifespan,
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log("api.error", path=request.url.path, code=exc.code, status_code=status_code, detail=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import cart, commissions, payouts, routing, webhooks

app.include_router(cart.router)
app.include_router(commissions.router)
app.include_router(payouts.router)
app.include_router(routing.router)
app.include_router(webhooks.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
