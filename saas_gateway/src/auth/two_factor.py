import hashlib
import logging
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

import pyotp
from fastapi import HTTPException, status

from ...config import get_settings
from ...database.db import get_database

logger = logging.getLogger(__name__)

_BACKUP_ALPHABET = string.ascii_letters + string.digits


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.strip().encode()).hexdigest()


def generate_backup_codes(count: Optional[int] = None) -> List[str]:
    count = count or get_settings().TWO_FACTOR_BACKUP_CODES
    codes = []
    for _ in range(count):
        raw = "".join(secrets.choice(_BACKUP_ALPHABET) for _ in range(10))
        codes.append(f"{raw[:5]}-{raw[5:]}")
    return codes


class TwoFactorController:
    """TOTP secrets and backup codes, one document per user in `two_factors`"""

    def __init__(self, db=None):
        self.db = db if db is not None else get_database()

    def _get(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.two_factors.find_one({"user_id": user_id})

    def enable(self, user: Dict[str, Any], issuer: Optional[str] = None) -> Dict[str, Any]:
        """Create a fresh secret and backup codes. 2FA switches on after the first verified code."""
        settings = get_settings()
        secret = pyotp.random_base32()
        backup_codes = generate_backup_codes()
        now = datetime.utcnow()

        self.db.two_factors.update_one(
            {"user_id": user["id"]},
            {
                "$set": {
                    "secret": secret,
                    "backup_codes": [_hash_code(c) for c in backup_codes],
                    "updated_at": now,
                },
                "$setOnInsert": {"user_id": user["id"], "created_at": now},
            },
            upsert=True,
        )

        issuer = issuer or settings.TWO_FACTOR_ISSUER or settings.APP_NAME
        totp_uri = pyotp.TOTP(secret).provisioning_uri(name=user["email"], issuer_name=issuer)
        return {"totpURI": totp_uri, "backupCodes": backup_codes}

    def verify_totp(self, user_id: str, code: str) -> bool:
        doc = self._get(user_id)
        if not doc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Two-factor authentication is not set up")
        # one step of clock drift either side
        return pyotp.TOTP(doc["secret"]).verify(code.strip(), valid_window=1)

    def verify_backup_code(self, user_id: str, code: str) -> bool:
        """Consume a backup code; each code works once"""
        doc = self._get(user_id)
        if not doc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Two-factor authentication is not set up")

        hashed = _hash_code(code)
        remaining = list(doc.get("backup_codes") or [])
        if hashed not in remaining:
            return False
        remaining.remove(hashed)
        self.db.two_factors.update_one(
            {"user_id": user_id},
            {"$set": {"backup_codes": remaining, "updated_at": datetime.utcnow()}},
        )
        logger.info("🔐 Backup code used by %s (%d left)", user_id, len(remaining))
        return True

    def mark_enabled(self, user_id: str) -> None:
        self.db.users.update_one(
            {"id": user_id},
            {"$set": {"two_factor_enabled": True, "updated_at": datetime.utcnow()}},
        )

    def regenerate_backup_codes(self, user_id: str) -> List[str]:
        if not self._get(user_id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Two-factor authentication is not set up")
        backup_codes = generate_backup_codes()
        self.db.two_factors.update_one(
            {"user_id": user_id},
            {"$set": {"backup_codes": [_hash_code(c) for c in backup_codes], "updated_at": datetime.utcnow()}},
        )
        return backup_codes

    def disable(self, user_id: str) -> None:
        self.db.two_factors.delete_one({"user_id": user_id})
        self.db.users.update_one(
            {"id": user_id},
            {"$set": {"two_factor_enabled": False, "updated_at": datetime.utcnow()}},
        )
