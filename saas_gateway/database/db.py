# saas_gateway/database/db.py
import logging
import time

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import OperationFailure, PyMongoError

logger = logging.getLogger(__name__)

CLIENT_OPTIONS = {
    "serverSelectionTimeoutMS": 10000,
    "connectTimeoutMS": 10000,
    "maxPoolSize": 20,
    "retryWrites": True,
    "appName": "saas-gateway",
}


def connect_with_retry(mongo_uri: str, attempts: int = 5, backoff: float = 1.0) -> MongoClient:
    """Open a client and ping it, backing off exponentially between attempts.

    Authentication failures are not retried.
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        client = MongoClient(mongo_uri, **CLIENT_OPTIONS)
        try:
            client.admin.command("ping")
            logger.info(f"✅ MongoDB reachable (attempt {attempt}/{attempts})")
            return client
        except OperationFailure as e:
            client.close()
            logger.error(f"❌ MongoDB rejected the connection: {e}")
            raise ConnectionError("MongoDB authentication failed") from e
        except PyMongoError as e:
            client.close()
            last_error = e
            logger.warning(f"⚠️ MongoDB not reachable (attempt {attempt}/{attempts}): {str(e)[:200]}")
            if attempt < attempts:
                time.sleep(backoff * (2 ** (attempt - 1)))
    raise ConnectionError("Unable to connect to MongoDB") from last_error


class DatabaseConnection:
    _instance = None
    _db = None
    _settings = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DatabaseConnection, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._db is None:
            # Import settings here to avoid circular import
            if self._settings is None:
                from ..config import get_settings
                self._settings = get_settings()

            db_name = self._settings.DATABASE_NAME
            logger.info("🔄 Initializing MongoDB connection...")
            self.client = connect_with_retry(self._settings.MONGODB_URI)

            DatabaseConnection._db = self.client[db_name]
            logger.info(f"✅ MongoDB connection established for database '{db_name}'")

            self._create_indexes()

    def get_database(self):
        """Get the database instance"""
        return self._db

    def close_connection(self):
        """Close MongoDB connection"""
        client = getattr(self, "client", None)
        if client:
            client.close()
            DatabaseConnection._db = None
            logger.info("🔒 MongoDB connection closed")

    def _create_indexes(self):
        """Create database indexes for better performance"""
        # Users
        self._db.users.create_index("id", unique=True)
        self._db.users.create_index("email", unique=True)
        self._db.users.create_index("stripe_meta.subscription_id")
        self._db.users.create_index("stripe_customer_id")

        # Sessions (refresh tokens) expire through the TTL monitor
        self._db.sessions.create_index("token", unique=True)
        self._db.sessions.create_index("id", unique=True)
        self._db.sessions.create_index("user_id")
        self._db.sessions.create_index("expires_at", expireAfterSeconds=0)

        # Social accounts
        self._db.accounts.create_index([("provider_id", 1), ("account_id", 1)], unique=True)
        self._db.accounts.create_index("user_id")

        # Email OTPs
        self._db.verification_otps.create_index([("email", 1), ("purpose", 1)])
        self._db.verification_otps.create_index("expires_at", expireAfterSeconds=3600)

        # Two-factor secrets
        self._db.two_factors.create_index("user_id", unique=True)

        # OAuth state
        self._db.oauth_states.create_index("state", unique=True)
        self._db.oauth_states.create_index("expires_at", expireAfterSeconds=0)

        # Stripe bookkeeping
        self._db.stripe_events_processed.create_index("event_id", unique=True)
        self._db.payments.create_index("stripe_invoice_id", unique=True)
        self._db.stripe_audit.create_index("created_at")

    @property
    def db(self) -> Database:
        return self._db


def get_database() -> Database:
    """Get database instance"""
    return DatabaseConnection().db
