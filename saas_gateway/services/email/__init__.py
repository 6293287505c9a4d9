from .email_provider import EmailProvider, SendResult
from .factory import get_email_provider

__all__ = ["EmailProvider", "SendResult", "get_email_provider"]
