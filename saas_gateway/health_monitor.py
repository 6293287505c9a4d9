# saas_gateway/health_monitor.py
"""
Health monitoring for the gateway's backing services
Separated from main.py for better organization
"""

import logging
from datetime import datetime
from typing import Any, Dict

from pymongo.errors import PyMongoError
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class HealthMonitor:
    def __init__(self, settings):
        self.settings = settings

    def _check_mongodb(self) -> Dict[str, Any]:
        from .database.db import get_database

        try:
            get_database().command("ping")
            return {"status": "healthy", "database": self.settings.DATABASE_NAME}
        except (PyMongoError, ConnectionError) as e:
            return {"status": "unhealthy", "error": str(e)}

    def _check_stripe(self) -> Dict[str, Any]:
        from .src.stripe.client import key_mode
        from .src.stripe.config import get_settings as get_stripe_settings

        try:
            stripe_settings = get_stripe_settings()
        except ValidationError as e:
            return {"status": "unhealthy", "error": f"Stripe is not configured: {e.error_count()} missing setting(s)"}
        return {"status": "healthy", "mode": key_mode(stripe_settings.STRIPE_SECRET_KEY), "api_version": stripe_settings.STRIPE_API_VERSION}

    def _check_email(self) -> Dict[str, Any]:
        from .services.email import get_email_provider

        result = get_email_provider().verify_connection()
        if result.ok:
            return {"status": "healthy", "provider": result.provider}
        return {"status": "unhealthy", "provider": result.provider, "error": result.error}

    async def comprehensive_health_check(self) -> Dict[str, Any]:
        """Status of MongoDB, the Stripe configuration and the e-mail provider"""
        services = {
            "mongodb": self._check_mongodb(),
            "stripe": self._check_stripe(),
            "email": self._check_email(),
        }
        healthy = sum(1 for s in services.values() if s["status"] == "healthy")
        if healthy == len(services):
            overall = "healthy"
        elif services["mongodb"]["status"] == "healthy":
            overall = "degraded"
        else:
            overall = "unhealthy"

        return {
            "status": overall,
            "service": self.settings.SERVICE_NAME,
            "version": self.settings.SERVICE_VERSION,
            "services": services,
            "timestamp": datetime.utcnow().isoformat(),
        }

    async def startup_health_display(self):
        """Log a short readiness summary on startup"""
        logger.info("🚀 %s starting (%s)", self.settings.SERVICE_NAME, self.settings.ENVIRONMENT)
        for name, check in (("MongoDB", self._check_mongodb), ("Stripe", self._check_stripe)):
            result = check()
            if result["status"] == "healthy":
                logger.info("✅ %-8s - READY", name)
            else:
                logger.warning("❌ %-8s - %s", name, result.get("error"))
        logger.info("✅ API Gateway - READY (Port: %s)", self.settings.SERVICE_PORT)
