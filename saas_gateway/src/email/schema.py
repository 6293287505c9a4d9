from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EmailType(str, Enum):
    PASSWORD_RESET = "password-reset"
    WELCOME = "welcome"
    EMAIL_VERIFICATION = "email-verification"
    CUSTOM = "custom"


class SendEmailRequest(BaseModel):
    # Validated by the controller so missing fields get the API's own messages
    type: Optional[str] = None
    to: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
