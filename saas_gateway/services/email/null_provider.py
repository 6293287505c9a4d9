from __future__ import annotations
import logging
from typing import Optional

from .email_provider import EmailProvider, SendResult

logger = logging.getLogger(__name__)


class NullProvider(EmailProvider):
    """No-op provider for local/dev or when EMAIL_PROVIDER=none. Always returns ok=True.
    Useful to avoid errors when keys are not configured.
    """

    name = "none"

    def send_email(self, *, to: str, subject: str, html: str, text: Optional[str] = None, from_email: Optional[str] = None, from_name: Optional[str] = None) -> SendResult:
        logger.info("📭 Email provider disabled; dropping '%s' to %s", subject, to)
        return SendResult(ok=True, provider=self.name, message_id="noop")

    def verify_connection(self) -> SendResult:
        return SendResult(ok=True, provider=self.name)
