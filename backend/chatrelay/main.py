"""
Chat Relay - FastAPI Application

Main entry point for the backend API.
Provides auth, billing, Stripe webhook and access-gate endpoints.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatrelay.config.settings import settings
from chatrelay.infrastructure.exceptions import (
    AuthenticationError,
    ChatRelayError,
    ConfigurationError,
    DuplicateError,
    NotFoundError,
    SubscriptionRequiredError,
    ValidationError,
)
from chatrelay.infrastructure.payments.stripe_service import StripeServiceError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Chat Relay Backend starting in {settings.environment} mode...")

    from chatrelay.infrastructure.db.database import init_db, close_db
    await init_db()
    logger.info("Database connection pool initialized")

    yield

    # Shutdown
    await close_db()
    logger.info("Chat Relay Backend shutting down...")


app = FastAPI(
    title="Chat Relay",
    description="Multi-provider AI chat relay with subscription billing",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(SubscriptionRequiredError)
async def subscription_required_handler(request: Request, exc: SubscriptionRequiredError):
    """Render access-gate denials with the upgrade payload."""
    return JSONResponse(
        status_code=402,
        content=exc.to_dict(),
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    """Handle authentication errors."""
    return JSONResponse(
        status_code=401,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(DuplicateError)
async def duplicate_error_handler(request: Request, exc: DuplicateError):
    """Handle duplicate resource errors."""
    return JSONResponse(
        status_code=409,
        content=exc.to_dict(),
    )


@app.exception_handler(StripeServiceError)
async def stripe_error_handler(request: Request, exc: StripeServiceError):
    """Payment processor failures surface as a bad gateway."""
    logger.error(f"Stripe error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=502,
        content=exc.to_dict(),
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Handle configuration errors."""
    logger.error(f"Configuration error: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


@app.exception_handler(ChatRelayError)
async def general_error_handler(request: Request, exc: ChatRelayError):
    """Handle all other application errors."""
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "chat-relay"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Chat Relay API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from chatrelay.api.routes import auth, billing, webhooks, access

app.include_router(auth.router, prefix="/api", tags=["Auth"])
app.include_router(billing.router, prefix="/api", tags=["Billing"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(access.router, prefix="/api", tags=["Access"])
