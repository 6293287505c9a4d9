# saas_gateway/src/auth/routes.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ...middlewares.jwt_auth import JWTAuthController, get_current_user, require_csrf
from .controller import AuthController
from .schema import (
    ChangePasswordRequest,
    JWTClaims,
    SignInRequest,
    SignUpRequest,
    UpdateUserRequest,
    public_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

jwt_auth = JWTAuthController()


def get_auth_controller() -> AuthController:
    return AuthController()


def public_session(session: dict) -> dict:
    return {
        "id": session["id"],
        "userId": session["user_id"],
        "expiresAt": session.get("expires_at"),
        "createdAt": session.get("created_at"),
        "updatedAt": session.get("updated_at"),
        "ipAddress": session.get("ip_address"),
        "userAgent": session.get("user_agent"),
    }


@router.post("/sign-up/email")
async def sign_up_email(
    body: SignUpRequest,
    request: Request,
    response: Response,
    auth: AuthController = Depends(get_auth_controller),
):
    """Create a password account and sign it in"""
    user = await auth.register(body)
    issued = jwt_auth.issue_session(response, user, request)
    return {"user": public_user(user), "csrf_token": issued["csrf_token"]}


@router.post("/sign-in/email")
async def sign_in_email(
    body: SignInRequest,
    request: Request,
    response: Response,
    auth: AuthController = Depends(get_auth_controller),
):
    """Password sign-in. Accounts with 2FA get a pending cookie instead of a session."""
    user = await auth.login(body)

    if user.get("two_factor_enabled"):
        jwt_auth.set_two_factor_cookie(response, jwt_auth.create_two_factor_token(user["id"]))
        return {"twoFactorRedirect": True}

    auth.touch_last_login(user["id"])
    issued = jwt_auth.issue_session(response, user, request, persistent=body.remember_me)
    return {"user": public_user(user), "csrf_token": issued["csrf_token"]}


@router.post("/sign-out", dependencies=[Depends(require_csrf)])
async def sign_out(request: Request, response: Response):
    """Revoke the current tokens and clear cookies"""
    access_token = request.cookies.get(jwt_auth.access_token_cookie)
    refresh_token = request.cookies.get(jwt_auth.refresh_token_cookie)

    if access_token:
        jwt_auth.revoke_token(access_token, "access")
    if refresh_token:
        jwt_auth.revoke_token(refresh_token, "refresh")

    jwt_auth.clear_auth_cookies(response)
    return {"success": True}


@router.get("/get-session")
async def get_session(request: Request, auth: AuthController = Depends(get_auth_controller)):
    """Current session and user, or null"""
    claims = jwt_auth.get_optional_user(request)
    session = None
    if claims:
        session = jwt_auth.get_session_by_id(claims.session_id)
    else:
        refresh_token = request.cookies.get(jwt_auth.refresh_token_cookie)
        if refresh_token:
            try:
                session = jwt_auth.verify_session_token(refresh_token)
            except HTTPException:
                session = None

    if not session:
        return None

    user = auth.db.users.find_one({"id": session["user_id"]}, {"_id": 0})
    if not user or not user.get("is_active", True):
        return None
    return {"session": public_session(session), "user": public_user(user)}


@router.post("/refresh")
async def refresh_token(request: Request, response: Response, auth: AuthController = Depends(get_auth_controller)):
    """Issue a new access token from the session cookie"""
    token = request.cookies.get(jwt_auth.refresh_token_cookie)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token missing")

    session = jwt_auth.verify_session_token(token)
    user = auth.get_user(session["user_id"])
    access_token = jwt_auth.create_access_token(user["id"], session["id"], user.get("email"))
    csrf_token = jwt_auth.set_auth_cookies(
        response, access_token, token, csrf_token=request.cookies.get(jwt_auth.csrf_cookie_name)
    )
    return {"success": True, "csrf_token": csrf_token}


@router.post("/update-user", dependencies=[Depends(require_csrf)])
async def update_user(
    body: UpdateUserRequest,
    current_user: JWTClaims = Depends(get_current_user),
    auth: AuthController = Depends(get_auth_controller),
):
    user = await auth.update_user(current_user.user_id, name=body.name, image=body.image)
    return {"status": True, "user": public_user(user)}


@router.post("/change-password", dependencies=[Depends(require_csrf)])
async def change_password(
    body: ChangePasswordRequest,
    current_user: JWTClaims = Depends(get_current_user),
    auth: AuthController = Depends(get_auth_controller),
):
    await auth.change_password(current_user.user_id, body)
    if body.revoke_other_sessions:
        revoked = jwt_auth.revoke_user_sessions(current_user.user_id, except_session_id=current_user.session_id)
        logger.info("🔒 Revoked %d other sessions for %s", revoked, current_user.user_id)
    return {"status": True}
