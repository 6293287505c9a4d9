import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from ...config import get_settings
from ...services.email import SendResult, get_email_provider
from ...services.email.templates import render_templates
from .schema import EmailType

logger = logging.getLogger(__name__)


class EmailController:
    """Templated transactional e-mail on top of the configured provider"""

    def __init__(self, provider=None):
        self.provider = provider or get_email_provider()
        self.settings = get_settings()

    def _send_template(self, to: str, subject: str, template: str, vars: Dict[str, Any]) -> SendResult:
        rendered = render_templates(template, {"app_name": self.settings.APP_NAME, **vars})
        return self.provider.send_email(to=to, subject=subject, html=rendered["html"] or rendered["text"], text=rendered["text"])

    def send_password_reset(self, to: str, reset_link: str, user_name: Optional[str] = None) -> SendResult:
        return self._send_template(
            to,
            f"Reset your {self.settings.APP_NAME} password",
            "password_reset",
            {"reset_link": reset_link, "user_name": user_name or "there"},
        )

    def send_welcome(self, to: str, user_name: str, login_link: str) -> SendResult:
        return self._send_template(
            to,
            f"Welcome to {self.settings.APP_NAME}",
            "welcome",
            {"user_name": user_name, "login_link": login_link},
        )

    def send_verification(self, to: str, verification_link: str, user_name: Optional[str] = None) -> SendResult:
        return self._send_template(
            to,
            "Verify your email address",
            "email_verification",
            {"verification_link": verification_link, "user_name": user_name or "there"},
        )

    def send_custom(self, to: str, subject: str, html: str, text: Optional[str] = None) -> SendResult:
        return self.provider.send_email(to=to, subject=subject, html=html, text=text)

    def send(self, email_type: Optional[str], to: Optional[str], data: Dict[str, Any]) -> SendResult:
        """Validate a send request per type and dispatch it"""
        if not email_type or not to:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields: type and to")

        try:
            kind = EmailType(email_type)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email type")

        if kind == EmailType.PASSWORD_RESET:
            if not data.get("resetLink"):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing resetLink for password reset email")
            return self.send_password_reset(to, data["resetLink"], data.get("userName"))

        if kind == EmailType.WELCOME:
            if not data.get("userName") or not data.get("loginLink"):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing userName and loginLink for welcome email")
            return self.send_welcome(to, data["userName"], data["loginLink"])

        if kind == EmailType.EMAIL_VERIFICATION:
            if not data.get("verificationLink"):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing verificationLink for email verification")
            return self.send_verification(to, data["verificationLink"], data.get("userName"))

        if not data.get("subject") or not data.get("html"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing subject and html for custom email")
        return self.send_custom(to, data["subject"], data["html"], data.get("text"))

    def test_connection(self) -> SendResult:
        return self.provider.verify_connection()
