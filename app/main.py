"""
Postflow API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import engine, Base
from .logging_config import api_logger
from .middleware import SecurityHeadersMiddleware, RequestLoggingMiddleware
from .limiter import limiter
from .responses import ApiException, api_exception_handler, unhandled_exception_handler
from .routes import (
    auth_router,
    posts_router,
    competitors_router,
    engagement_router,
    social_accounts_router,
    health_router,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    # Create tables (in production, use Alembic migrations instead)
    Base.metadata.create_all(bind=engine)
    api_logger.info("Postflow API started", environment=settings.environment)

    yield  # App is running

    api_logger.info("Postflow API stopped")


app = FastAPI(
    title="Postflow API",
    description="Social media publishing and competitor analysis backend",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(ApiException, api_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware (only in debug mode)
if settings.debug:
    app.add_middleware(RequestLoggingMiddleware)

# CORS - Properly configured with specific methods
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Scheduler-Key",
    ],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Routes
app.include_router(auth_router)
app.include_router(posts_router)
app.include_router(competitors_router)
app.include_router(engagement_router)
app.include_router(social_accounts_router)
app.include_router(health_router)


@app.get("/")
def root():
    """Root endpoint points at the API docs."""
    return {
        "message": "Postflow API",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
