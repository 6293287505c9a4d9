import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field


# ----- Enums -----
class OTPType(str, Enum):
    SIGN_IN = "sign-in"
    EMAIL_VERIFICATION = "email-verification"
    FORGET_PASSWORD = "forget-password"


class SocialProvider(str, Enum):
    GOOGLE = "google"
    GITHUB = "github"


# ----- Validators -----
PASSWORD_SPECIALS = "@$!%*?&"
_NAME_RE = re.compile(r"^[^\W\d_]+(?:[ '\-][^\W\d_]+)*$")


def password_validator(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if len(v) > 100:
        raise ValueError('Password must be less than 100 characters')
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one digit')
    if not any(c in PASSWORD_SPECIALS for c in v):
        raise ValueError(f'Password must contain at least one special character ({PASSWORD_SPECIALS})')
    return v


def name_validator(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = " ".join(v.split())
    if len(v) < 1 or len(v) > 100:
        raise ValueError('Name must be between 1 and 100 characters')
    if not _NAME_RE.match(v):
        raise ValueError('Name can only contain letters and spaces')
    return v


def email_length_validator(v: str) -> str:
    if len(v) > 100:
        raise ValueError('Email must be less than 100 characters')
    return v.lower()


Password = Annotated[str, AfterValidator(password_validator)]
Name = Annotated[str, AfterValidator(name_validator)]
Email = Annotated[EmailStr, AfterValidator(email_length_validator)]
OTPCode = Annotated[str, Field(min_length=4, max_length=10)]


# ----- Request Models -----
class SignUpRequest(BaseModel):
    email: Email
    password: Password
    name: Name
    image: Optional[str] = None


class SignInRequest(BaseModel):
    email: Email
    password: str
    remember_me: bool = Field(True, alias="rememberMe")

    class Config:
        populate_by_name = True


class UpdateUserRequest(BaseModel):
    name: Optional[Name] = None
    image: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: Password = Field(..., alias="newPassword")
    revoke_other_sessions: bool = Field(False, alias="revokeOtherSessions")

    class Config:
        populate_by_name = True


class SendOTPRequest(BaseModel):
    email: Email
    type: OTPType


class ForgetPasswordRequest(BaseModel):
    email: Email


class CheckOTPRequest(BaseModel):
    email: Email
    otp: OTPCode
    type: OTPType


class ResetPasswordRequest(BaseModel):
    email: Email
    otp: OTPCode
    password: Password


class EmailOTPRequest(BaseModel):
    """Body for verify-email and sign-in with an emailed code."""
    email: Email
    otp: OTPCode


class TwoFactorEnableRequest(BaseModel):
    password: str
    issuer: Optional[str] = None


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=32)
    trust_device: bool = Field(False, alias="trustDevice")

    class Config:
        populate_by_name = True


class PasswordConfirmRequest(BaseModel):
    password: str


class SocialSignInRequest(BaseModel):
    provider: str
    callback_url: Optional[str] = Field(None, alias="callbackURL")

    class Config:
        populate_by_name = True


# ----- Token / session models -----

class JWTClaims(BaseModel):
    user_id: str
    session_id: str
    email: str = ""
    exp: datetime
    iat: datetime
    jti: str


# ----- Stored documents -----
class User(BaseModel):
    id: str
    email: str
    name: str
    image: Optional[str] = None
    password_hash: str = ""
    email_verified: bool = False
    two_factor_enabled: bool = False
    is_active: bool = True
    stripe_customer_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_login: Optional[datetime] = None


def public_user(doc: dict) -> dict:
    """Client-facing projection of a user document."""
    return {
        "id": doc["id"],
        "email": doc["email"],
        "name": doc.get("name"),
        "image": doc.get("image"),
        "emailVerified": bool(doc.get("email_verified")),
        "twoFactorEnabled": bool(doc.get("two_factor_enabled")),
        "createdAt": doc.get("created_at"),
        "updatedAt": doc.get("updated_at"),
    }
