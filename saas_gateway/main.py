# saas_gateway/main.py
"""
SaaS Platform API Gateway
Minimal main file with core FastAPI setup and routing
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .config import get_settings
from .health_monitor import HealthMonitor
from .middlewares.jwt_auth_middleware import JWTAuthMiddleware
from .middlewares.security_middleware import SecurityHeadersMiddleware
from .router_config import setup_routers

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Configure logging to reduce verbosity
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("stripe").setLevel(logging.WARNING)
logging.getLogger("pymongo").setLevel(logging.WARNING)
logging.getLogger("passlib").setLevel(logging.ERROR)

# Get settings
settings = get_settings()
allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]

# Initialize health monitor
health_monitor = HealthMonitor(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    await health_monitor.startup_health_display()
    yield
    from .database.db import DatabaseConnection

    if DatabaseConnection._db is not None:
        DatabaseConnection().close_connection()


# Create FastAPI app
app = FastAPI(
    title="SaaS Platform API Gateway",
    description="Authentication, subscription billing and transactional e-mail for the SaaS frontend",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

# Middleware runs in reverse order of registration: CORS wraps the auth gate
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(JWTAuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS.split(","),
    allow_headers=settings.CORS_ALLOW_HEADERS.split(","),
    expose_headers=settings.CORS_EXPOSE_HEADERS.split(","),
    max_age=settings.CORS_MAX_AGE,
)

# Setup all application routers
app = setup_routers(app)

# Uploaded profile images
app.mount("/uploads", StaticFiles(directory=settings.UPLOADS_ROOT, check_dir=False), name="uploads")


# Core API endpoints
@app.get("/health")
async def health_check():
    """Simple health check endpoint"""
    return {"status": "healthy", "service": settings.SERVICE_NAME}


@app.get("/health/services")
async def comprehensive_health_check():
    """Health of MongoDB, Stripe configuration and e-mail provider"""
    return await health_monitor.comprehensive_health_check()


@app.get("/")
async def root():
    """Root endpoint with platform information"""
    return {
        "message": "SaaS Platform API Gateway",
        "version": settings.SERVICE_VERSION,
        "features": ["authentication", "two_factor", "social_login", "subscriptions", "stripe_webhooks", "email"],
    }


# Main entry point
if __name__ == "__main__":
    uvicorn.run("saas_gateway.main:app", host=settings.SERVICE_HOST, port=settings.SERVICE_PORT, log_level="info")
