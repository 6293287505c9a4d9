import json

import httpx
import pytest

from .. import factory
from ..null_provider import NullProvider
from ..resend_provider import ResendProvider
from ..smtp_provider import SMTPProvider
from ..templates import TemplateNotFound, render_templates


def _resend(handler, api_key="re_test"):
    return ResendProvider(
        api_key=api_key,
        default_from="noreply@example.com",
        default_from_name="Example",
        transport=httpx.MockTransport(handler),
    )


def test_resend_posts_message():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    result = _resend(handler).send_email(to="bob@example.com", subject="Hi", html="<p>Hi</p>", text="Hi")

    assert result.ok
    assert result.message_id == "email_123"
    assert seen["auth"] == "Bearer re_test"
    assert seen["body"]["from"] == "Example <noreply@example.com>"
    assert seen["body"]["to"] == ["bob@example.com"]
    assert seen["body"]["text"] == "Hi"


def test_resend_reports_api_errors():
    provider = _resend(lambda request: httpx.Response(422, json={"message": "Invalid `to` field"}))
    result = provider.send_email(to="nope", subject="Hi", html="<p>Hi</p>")
    assert not result.ok
    assert result.error == "HTTP 422: Invalid `to` field"


def test_resend_without_key_fails_without_network():
    def handler(request):
        raise AssertionError("no request expected")

    result = _resend(handler, api_key=None).send_email(to="bob@example.com", subject="Hi", html="x")
    assert result.error == "Missing RESEND_API_KEY"


def test_smtp_without_credentials():
    provider = SMTPProvider(host=None, port=465, user=None, password=None, default_from=None, default_from_name=None)
    result = provider.send_email(to="bob@example.com", subject="Hi", html="x")
    assert not result.ok
    assert "SMTP credentials not configured" in result.error


def test_factory_defaults_to_null_provider():
    factory.reset_email_provider()
    try:
        assert isinstance(factory.get_email_provider(), NullProvider)
        assert factory.get_email_provider() is factory.get_email_provider()
    finally:
        factory.reset_email_provider()


def test_render_templates_substitutes_variables():
    rendered = render_templates("welcome", {"user_name": "Bob", "login_link": "http://x/login", "app_name": "Acme"})
    assert "Bob" in rendered["text"]
    assert "http://x/login" in rendered["html"]


def test_render_templates_unknown_template():
    with pytest.raises(TemplateNotFound):
        render_templates("does_not_exist", {})
