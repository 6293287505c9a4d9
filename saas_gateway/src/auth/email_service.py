import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, status
from passlib.context import CryptContext

from ...config import get_settings
from ...database.db import get_database
from ...services.email.factory import get_email_provider
from ...services.email.templates import render_templates
from .schema import OTPType

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

COLLECTION_NAME = "verification_otps"

_SUBJECTS = {
    OTPType.SIGN_IN: "Your sign-in code",
    OTPType.EMAIL_VERIFICATION: "Verify your email address",
    OTPType.FORGET_PASSWORD: "Password Reset Verification Code",
}


def _collection():
    return get_database()[COLLECTION_NAME]


def generate_otp(length: Optional[int] = None) -> str:
    length = length or get_settings().OTP_LENGTH
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def _store_otp(email: str, otp_plain: str, purpose: OTPType) -> None:
    """Hash + store OTP for *purpose*, superseding earlier pending codes.

    Refuses when the e-mail already received OTP_RATE_LIMIT_PER_HOUR codes in the last hour.
    """
    settings = get_settings()
    collection = _collection()
    now = datetime.utcnow()

    recent_count = collection.count_documents({
        "email": email,
        "created_at": {"$gte": now - timedelta(hours=1)},
    })
    if recent_count >= settings.OTP_RATE_LIMIT_PER_HOUR:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="OTP rate limit exceeded. Please wait before requesting another code."
        )

    collection.update_many(
        {"email": email, "purpose": purpose.value, "status": "pending"},
        {"$set": {"status": "superseded"}},
    )
    collection.insert_one({
        "email": email,
        "purpose": purpose.value,
        "otp_hash": pwd_context.hash(otp_plain),
        "attempts": 0,
        "status": "pending",
        "expires_at": now + timedelta(minutes=settings.OTP_TTL),
        "created_at": now,
    })


def send_verification_otp(email: str, purpose: OTPType) -> None:
    """Generate, persist and e-mail a one-time code."""
    settings = get_settings()
    email = email.lower()
    otp = generate_otp()
    _store_otp(email, otp, purpose)

    template = "otp_" + purpose.value.replace("-", "_")
    rendered = render_templates(template, {
        "otp": otp,
        "ttl_minutes": settings.OTP_TTL,
        "app_name": settings.APP_NAME,
    })
    result = get_email_provider().send_email(
        to=email,
        subject=_SUBJECTS[purpose],
        html=rendered["html"] or rendered["text"],
        text=rendered["text"],
    )
    if not result.ok:
        logger.error("❌ Failed to send %s OTP to %s: %s", purpose.value, email, result.error)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to send email: {result.error}"
        )
    logger.info("✅ OTP email sent to %s for %s", email, purpose.value)


def check_otp(email: str, otp_plain: str, purpose: OTPType, *, consume: bool = False) -> bool:
    """Validate the pending code for *email*/*purpose*.

    Raises 400 on a wrong, expired or exhausted code. A consumed code cannot be used again.
    """
    settings = get_settings()
    collection = _collection()
    email = email.lower()

    doc = collection.find_one({"email": email, "purpose": purpose.value, "status": "pending"})
    if not doc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid OTP")

    if doc["expires_at"] < datetime.utcnow():
        collection.update_one({"_id": doc["_id"]}, {"$set": {"status": "expired"}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="OTP expired")

    if doc.get("attempts", 0) >= settings.OTP_MAX_ATTEMPTS:
        collection.update_one({"_id": doc["_id"]}, {"$set": {"status": "locked"}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Too many attempts")

    if not pwd_context.verify(otp_plain, doc["otp_hash"]):
        attempts = doc.get("attempts", 0) + 1
        update = {"$set": {"attempts": attempts}}
        if attempts >= settings.OTP_MAX_ATTEMPTS:
            update["$set"]["status"] = "locked"
            collection.update_one({"_id": doc["_id"]}, update)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Too many attempts")
        collection.update_one({"_id": doc["_id"]}, update)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid OTP")

    if consume:
        collection.update_one(
            {"_id": doc["_id"]},
            {"$set": {"status": "used", "used_at": datetime.utcnow()}},
        )
    return True
