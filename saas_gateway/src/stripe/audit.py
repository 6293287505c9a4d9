import logging
from datetime import datetime

from pymongo.errors import PyMongoError

from ...database.db import get_database

logger = logging.getLogger(__name__)

COLLECTION_NAME = "stripe_audit"


def log(event_type: str, payload: dict, status: str = "ok", note: str = ""):
    """Append one row to stripe_audit. A failed write is logged and dropped."""
    doc = {
        "event_type": event_type,
        "payload": payload,
        "status": status,
        "note": note,
        "created_at": datetime.utcnow(),
    }
    try:
        get_database()[COLLECTION_NAME].insert_one(doc)
    except PyMongoError as e:
        logger.warning("Stripe audit write failed for %s: %s", event_type, e)
