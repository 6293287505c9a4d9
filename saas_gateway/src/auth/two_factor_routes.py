import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ...middlewares.jwt_auth import JWTAuthController, get_current_user, require_csrf
from .controller import AuthController
from .routes import get_auth_controller
from .schema import JWTClaims, PasswordConfirmRequest, TwoFactorCodeRequest, TwoFactorEnableRequest, public_user
from .two_factor import TwoFactorController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/two-factor", tags=["Two Factor"], dependencies=[Depends(require_csrf)])

jwt_auth = JWTAuthController()


def get_two_factor_controller() -> TwoFactorController:
    return TwoFactorController()


def _complete_verification(
    request: Request,
    response: Response,
    auth: AuthController,
    checker: Callable[[str], bool],
    on_session: Callable[[str], None],
):
    """Run *checker* for the signed-in user, or for a pending 2FA sign-in which it then completes"""
    claims = jwt_auth.get_optional_user(request)
    if claims:
        if not checker(claims.user_id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")
        on_session(claims.user_id)
        return {"status": True}

    pending = request.cookies.get(jwt_auth.two_factor_cookie)
    if not pending:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    user_id = jwt_auth.verify_two_factor_token(pending)
    if not checker(user_id):
        remaining = jwt_auth.record_two_factor_failure(pending)
        if remaining == 0:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Too many attempts. Please sign in again.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    jwt_auth.consume_two_factor_token(pending)
    user = auth.get_user(user_id)
    auth.touch_last_login(user_id)
    issued = jwt_auth.issue_session(response, user, request)
    jwt_auth.clear_two_factor_cookie(response)
    logger.info("🔐 Two-factor sign-in completed for %s", user_id)
    return {"user": public_user(user), "csrf_token": issued["csrf_token"]}


@router.post("/enable")
async def enable_two_factor(
    body: TwoFactorEnableRequest,
    current_user: JWTClaims = Depends(get_current_user),
    auth: AuthController = Depends(get_auth_controller),
    two_factor: TwoFactorController = Depends(get_two_factor_controller),
):
    """Start 2FA setup: returns the otpauth URI for the QR code and the backup codes"""
    user = auth.confirm_password(current_user.user_id, body.password)
    return two_factor.enable(user, body.issuer)


@router.post("/verify-totp")
async def verify_totp(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    auth: AuthController = Depends(get_auth_controller),
    two_factor: TwoFactorController = Depends(get_two_factor_controller),
):
    """Confirm setup (signed in) or finish a pending sign-in with an authenticator code"""
    return _complete_verification(
        request,
        response,
        auth,
        checker=lambda user_id: two_factor.verify_totp(user_id, body.code),
        on_session=two_factor.mark_enabled,
    )


@router.post("/verify-backup-code")
async def verify_backup_code(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    auth: AuthController = Depends(get_auth_controller),
    two_factor: TwoFactorController = Depends(get_two_factor_controller),
):
    return _complete_verification(
        request,
        response,
        auth,
        checker=lambda user_id: two_factor.verify_backup_code(user_id, body.code),
        on_session=lambda user_id: None,
    )


@router.post("/generate-backup-codes")
async def generate_backup_codes(
    body: PasswordConfirmRequest,
    current_user: JWTClaims = Depends(get_current_user),
    auth: AuthController = Depends(get_auth_controller),
    two_factor: TwoFactorController = Depends(get_two_factor_controller),
):
    auth.confirm_password(current_user.user_id, body.password)
    return {"status": True, "backupCodes": two_factor.regenerate_backup_codes(current_user.user_id)}


@router.post("/disable")
async def disable_two_factor(
    body: PasswordConfirmRequest,
    current_user: JWTClaims = Depends(get_current_user),
    auth: AuthController = Depends(get_auth_controller),
    two_factor: TwoFactorController = Depends(get_two_factor_controller),
):
    auth.confirm_password(current_user.user_id, body.password)
    two_factor.disable(current_user.user_id)
    return {"status": True}
