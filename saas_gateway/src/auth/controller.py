import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from ...database.db import get_database
from ...utils.helperFunctions import generate_unique_id
from .schema import ChangePasswordRequest, SignInRequest, SignUpRequest, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthController:
    """Core authentication controller for user management"""

    def __init__(self, db=None):
        self.db = db if db is not None else get_database()

    def hash_password(self, password: str) -> str:
        """Hash password using bcrypt"""
        return pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify password against hash"""
        if not hashed_password:
            return False
        return pwd_context.verify(plain_password, hashed_password)

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.db.users.find_one({"email": email.lower()}, {"_id": 0})

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.db.users.find_one({"id": user_id}, {"_id": 0})
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    async def register(self, request: SignUpRequest) -> Dict[str, Any]:
        """Create a password account; the email starts unverified"""
        if self.find_user_by_email(request.email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User with this email already exists"
            )

        now = datetime.utcnow()
        user = User(
            id=generate_unique_id("user"),
            email=request.email.lower(),
            name=request.name,
            image=request.image,
            password_hash=self.hash_password(request.password),
            created_at=now,
            updated_at=now,
            last_login=now,
        ).model_dump()

        try:
            self.db.users.insert_one(dict(user))
        except DuplicateKeyError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User with this email already exists"
            )

        logger.info("👤 Registered user %s", user["id"])
        return user

    async def login(self, request: SignInRequest) -> Dict[str, Any]:
        """Check credentials and return the user document"""
        user = self.find_user_by_email(request.email)
        if not user or not self.verify_password(request.password, user.get("password_hash", "")):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if not user.get("is_active", True):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        return user

    def touch_last_login(self, user_id: str) -> None:
        now = datetime.utcnow()
        self.db.users.update_one({"id": user_id}, {"$set": {"last_login": now, "updated_at": now}})

    async def update_user(self, user_id: str, name: Optional[str] = None, image: Optional[str] = None) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        if name is not None:
            updates["name"] = name
        if image is not None:
            updates["image"] = image
        if not updates:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")

        updates["updated_at"] = datetime.utcnow()
        result = self.db.users.update_one({"id": user_id}, {"$set": updates})
        if result.matched_count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return self.get_user(user_id)

    async def change_password(self, user_id: str, request: ChangePasswordRequest) -> None:
        user = self.get_user(user_id)
        if not user.get("password_hash"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="This account signs in with a social provider and has no password"
            )
        if not self.verify_password(request.current_password, user["password_hash"]):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

        self.db.users.update_one(
            {"id": user_id},
            {"$set": {"password_hash": self.hash_password(request.new_password), "updated_at": datetime.utcnow()}}
        )

    def confirm_password(self, user_id: str, password: str) -> Dict[str, Any]:
        """Re-check the caller's password before a sensitive change"""
        user = self.get_user(user_id)
        if not self.verify_password(password, user.get("password_hash", "")):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid password")
        return user

    def set_password(self, email: str, password: str) -> Dict[str, Any]:
        user = self.find_user_by_email(email)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        self.db.users.update_one(
            {"id": user["id"]},
            {"$set": {"password_hash": self.hash_password(password), "updated_at": datetime.utcnow()}}
        )
        return user

    def mark_email_verified(self, email: str) -> None:
        self.db.users.update_one(
            {"email": email.lower()},
            {"$set": {"email_verified": True, "updated_at": datetime.utcnow()}}
        )

    def upsert_social_user(self, *, provider: str, account_id: str, email: str, name: Optional[str],
                           image: Optional[str], email_verified: bool) -> Dict[str, Any]:
        """Find or create the user behind a social identity and link the account"""
        email = email.lower()
        now = datetime.utcnow()

        account = self.db.accounts.find_one({"provider_id": provider, "account_id": account_id})
        user = None
        if account:
            user = self.db.users.find_one({"id": account["user_id"]}, {"_id": 0})
        if not user:
            user = self.find_user_by_email(email)
            if user and not email_verified:
                logger.warning("🚫 Refused %s link to %s: provider e-mail is unverified", provider, user["id"])
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Provider e-mail is not verified. Sign in with your password instead.",
                )

        if not user:
            user = User(
                id=generate_unique_id("user"),
                email=email,
                name=name or email.split("@")[0],
                image=image,
                password_hash="",
                email_verified=email_verified,
                created_at=now,
                updated_at=now,
                last_login=now,
            ).model_dump()
            self.db.users.insert_one(dict(user))
            logger.info("👤 Registered %s user %s", provider, user["id"])
        else:
            if not user.get("is_active", True):
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated")
            updates: Dict[str, Any] = {"last_login": now, "updated_at": now}
            if email_verified and not user.get("email_verified"):
                updates["email_verified"] = True
            if image and not user.get("image"):
                updates["image"] = image
            self.db.users.update_one({"id": user["id"]}, {"$set": updates})
            user.update(updates)

        if not account:
            self.db.accounts.insert_one({
                "id": generate_unique_id("account"),
                "user_id": user["id"],
                "provider_id": provider,
                "account_id": account_id,
                "created_at": now,
            })

        return user
