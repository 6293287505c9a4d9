from __future__ import annotations
import json
from typing import Optional

import httpx

from .email_provider import EmailProvider, SendResult

RESEND_API_BASE = "https://api.resend.com"


class ResendProvider(EmailProvider):
    """Resend transactional email provider adapter.

    Implements the EmailProvider interface using Resend's /emails endpoint.
    All errors are captured and returned via SendResult without raising exceptions.
    """

    name = "resend"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        default_from: Optional[str],
        default_from_name: Optional[str],
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.default_from = default_from
        self.default_from_name = default_from_name
        self._transport = transport

    def _client(self) -> httpx.Client:
        headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        return httpx.Client(base_url=RESEND_API_BASE, headers=headers, timeout=20.0, transport=self._transport)

    @staticmethod
    def _format_from(email: str, name: Optional[str]) -> str:
        return f"{name} <{email}>" if name else email

    @staticmethod
    def _parse_error(resp: httpx.Response) -> str:
        try:
            data = resp.json()
            # Resend errors look like { "statusCode": 422, "name": "...", "message": "..." }
            if isinstance(data, dict) and isinstance(data.get("message"), str):
                return f"HTTP {resp.status_code}: {data['message']}"
            return f"HTTP {resp.status_code}: {resp.text}"
        except ValueError:
            return f"HTTP {resp.status_code}: {resp.text}"

    def _post_email(self, payload: dict) -> SendResult:
        if not self.api_key:
            return SendResult(ok=False, provider=self.name, error="Missing RESEND_API_KEY")
        if not payload.get("from"):
            return SendResult(ok=False, provider=self.name, error="Missing from email")

        try:
            with self._client() as client:
                resp = client.post("/emails", content=json.dumps(payload))
                if 200 <= resp.status_code < 300:
                    message_id = None
                    try:
                        body = resp.json()
                        if isinstance(body, dict):
                            message_id = body.get("id")
                    except ValueError:
                        message_id = None
                    return SendResult(ok=True, provider=self.name, message_id=message_id)
                return SendResult(ok=False, provider=self.name, error=self._parse_error(resp))
        except httpx.HTTPError as e:
            return SendResult(ok=False, provider=self.name, error=str(e))

    def send_email(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> SendResult:
        from_email = from_email or self.default_from
        from_name = from_name or self.default_from_name

        payload = {
            "from": self._format_from(from_email, from_name) if from_email else "",
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        return self._post_email(payload)

    def verify_connection(self) -> SendResult:
        if not self.api_key:
            return SendResult(ok=False, provider=self.name, error="Missing RESEND_API_KEY")
        try:
            with self._client() as client:
                resp = client.get("/domains")
                if 200 <= resp.status_code < 300:
                    return SendResult(ok=True, provider=self.name)
                return SendResult(ok=False, provider=self.name, error=self._parse_error(resp))
        except httpx.HTTPError as e:
            return SendResult(ok=False, provider=self.name, error=str(e))
