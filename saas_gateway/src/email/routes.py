import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ...middlewares.jwt_auth import get_current_user, require_csrf
from ..auth.schema import JWTClaims
from .controller import EmailController
from .schema import SendEmailRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/send-email", tags=["Email"], dependencies=[Depends(require_csrf)])


def get_email_controller() -> EmailController:
    return EmailController()


@router.post("")
async def send_email(
    body: SendEmailRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: EmailController = Depends(get_email_controller),
):
    result = controller.send(body.type, body.to, body.data)
    if not result.ok:
        logger.error("Email send via %s failed: %s", result.provider, result.error)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error or "Failed to send email")

    logger.info("📧 %s email sent by %s (%s)", body.type, current_user.user_id, result.message_id)
    return {"success": True, "messageId": result.message_id, "message": "Email sent successfully"}


@router.get("")
async def test_email_configuration(
    current_user: JWTClaims = Depends(get_current_user),
    controller: EmailController = Depends(get_email_controller),
):
    """Check provider credentials without sending anything"""
    result = controller.test_connection()
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error or "Email configuration failed")
    return {"success": True, "message": "Email configuration is working"}
