from __future__ import annotations
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from .email_provider import EmailProvider, SendResult

logger = logging.getLogger(__name__)


class SMTPProvider(EmailProvider):
    """Plain SMTP delivery (SSL on 465, STARTTLS otherwise)."""

    name = "smtp"

    def __init__(self, *, host: Optional[str], port: int, user: Optional[str], password: Optional[str],
                 default_from: Optional[str], default_from_name: Optional[str]) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.default_from = default_from or user
        self.default_from_name = default_from_name

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.port == 465:
            smtp = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=20)
        else:
            # STARTTLS flow for ports like 587
            smtp = smtplib.SMTP(self.host, self.port, timeout=20)
            smtp.ehlo()
            smtp.starttls(context=context)
            smtp.ehlo()
        smtp.login(self.user, self.password)
        return smtp

    def _missing_config(self) -> Optional[str]:
        if not self.host or not self.user or not self.password:
            return "SMTP credentials not configured (SMTP_HOST, SMTP_USER, SMTP_PASS)"
        return None

    def send_email(self, *, to: str, subject: str, html: str, text: Optional[str] = None, from_email: Optional[str] = None, from_name: Optional[str] = None) -> SendResult:
        error = self._missing_config()
        if error:
            return SendResult(ok=False, provider=self.name, error=error)

        sender = from_email or self.default_from
        name = from_name or self.default_from_name
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{name} <{sender}>" if name else sender
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        msg.set_content(text or "")
        msg.add_alternative(html, subtype="html")

        try:
            with self._connect() as smtp:
                smtp.send_message(msg)
            return SendResult(ok=True, provider=self.name, message_id=msg["Message-ID"])
        except smtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed for %s: %s", self.user, e)
            return SendResult(ok=False, provider=self.name, error=f"SMTP authentication failed: {e}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP error: %s", e)
            return SendResult(ok=False, provider=self.name, error=f"SMTP error: {e}")

    def verify_connection(self) -> SendResult:
        error = self._missing_config()
        if error:
            return SendResult(ok=False, provider=self.name, error=error)
        try:
            with self._connect():
                pass
            return SendResult(ok=True, provider=self.name)
        except (smtplib.SMTPException, OSError) as e:
            return SendResult(ok=False, provider=self.name, error=f"SMTP connection error: {e}")
