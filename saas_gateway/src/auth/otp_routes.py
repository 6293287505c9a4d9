import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ...middlewares.jwt_auth import JWTAuthController
from .controller import AuthController
from .email_service import check_otp, send_verification_otp
from .routes import get_auth_controller
from .schema import (
    CheckOTPRequest,
    EmailOTPRequest,
    ForgetPasswordRequest,
    OTPType,
    ResetPasswordRequest,
    SendOTPRequest,
    public_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Email OTP"])

jwt_auth = JWTAuthController()


@router.post("/email-otp/send-verification-otp")
async def send_otp(body: SendOTPRequest, auth: AuthController = Depends(get_auth_controller)):
    """E-mail a one-time code. Always succeeds for unknown addresses to prevent enumeration."""
    if auth.find_user_by_email(body.email):
        send_verification_otp(body.email, body.type)
    else:
        logger.info("OTP requested for unknown e-mail; nothing sent")
    return {"success": True}


@router.post("/forget-password/email-otp")
async def forget_password(body: ForgetPasswordRequest, auth: AuthController = Depends(get_auth_controller)):
    """Step 1 of the reset wizard: send a forget-password code"""
    if auth.find_user_by_email(body.email):
        send_verification_otp(body.email, OTPType.FORGET_PASSWORD)
    else:
        logger.info("Password reset requested for unknown e-mail; nothing sent")
    return {"success": True}


@router.post("/email-otp/check-verification-otp")
async def check_verification_otp(body: CheckOTPRequest):
    """Step 2: validate the code without consuming it"""
    check_otp(body.email, body.otp, body.type, consume=False)
    return {"success": True}


@router.post("/email-otp/reset-password")
async def reset_password(body: ResetPasswordRequest, auth: AuthController = Depends(get_auth_controller)):
    """Step 3: consume the code, store the new password and sign out every session"""
    check_otp(body.email, body.otp, OTPType.FORGET_PASSWORD, consume=True)
    user = auth.set_password(body.email, body.password)
    jwt_auth.revoke_user_sessions(user["id"])
    logger.info("🔑 Password reset for %s", user["id"])
    return {"success": True}


@router.post("/email-otp/verify-email")
async def verify_email(body: EmailOTPRequest, auth: AuthController = Depends(get_auth_controller)):
    check_otp(body.email, body.otp, OTPType.EMAIL_VERIFICATION, consume=True)
    auth.mark_email_verified(body.email)
    return {"status": True}


@router.post("/sign-in/email-otp")
async def sign_in_email_otp(
    body: EmailOTPRequest,
    request: Request,
    response: Response,
    auth: AuthController = Depends(get_auth_controller),
):
    """Sign in an existing user with an e-mailed sign-in code"""
    check_otp(body.email, body.otp, OTPType.SIGN_IN, consume=True)
    user = auth.find_user_by_email(body.email)
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or OTP")

    # the code proves control of the mailbox
    auth.mark_email_verified(body.email)
    auth.touch_last_login(user["id"])
    user["email_verified"] = True
    issued = jwt_auth.issue_session(response, user, request)
    return {"user": public_user(user), "csrf_token": issued["csrf_token"]}
