import json
import smtplib

import httpx

from app.config import Settings
from app.models.user import User
from app.services.delivery import (
    EmailDeliveryClient,
    NotificationDelivery,
    PushDeliveryClient,
    build_delivery,
    render_email_html,
)
from app.services.messages import ResolvedMessage

MESSAGE = ResolvedMessage(title="Session starting soon!", body="Running starts in 2 hours.", index=0)


def _user(**overrides):
    values = {"id": "user-1", "name": "Ana", "email": "ana@example.com", "preferred_language": "en"}
    values.update(overrides)
    return User(**values)


def _push_client(handler):
    transport = httpx.MockTransport(handler)
    return PushDeliveryClient(
        endpoint="https://tribe.test/api/notifications/send",
        api_key="gateway-key",
        client=httpx.Client(transport=transport),
    )


def test_push_posts_payload_to_gateway():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"success": True})

    delivery = NotificationDelivery(push=_push_client(handler))
    result = delivery.deliver(_user(), MESSAGE, "/session/abc")

    assert result.success
    assert seen["body"] == {
        "userId": "user-1",
        "title": "Session starting soon!",
        "body": "Running starts in 2 hours.",
        "url": "/session/abc",
    }
    assert seen["auth"] == "Bearer gateway-key"


def test_push_gateway_error_status_is_a_failed_result():
    delivery = NotificationDelivery(push=_push_client(lambda request: httpx.Response(502, text="bad gateway")))

    result = delivery.deliver(_user(), MESSAGE, "/")

    assert not result.success
    assert "502" in result.error


def test_push_transport_error_is_a_failed_result():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    result = NotificationDelivery(push=_push_client(handler)).deliver(_user(), MESSAGE, "/")

    assert not result.success
    assert "unreachable" in result.error


def test_unconfigured_channel_is_a_failed_result():
    result = NotificationDelivery().deliver(_user(), MESSAGE, "/", channel="email")

    assert not result.success
    assert result.channel == "email"


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


def test_email_sends_html_with_deep_link(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    client = EmailDeliveryClient(host="smtp.test", site_url="https://tribe.app/")

    result = NotificationDelivery(email=client).deliver(_user(), MESSAGE, "/session/abc", channel="email")

    assert result.success
    msg = FakeSMTP.sent[0]
    assert msg["To"] == "ana@example.com"
    assert msg["Subject"] == "Session starting soon!"
    html = msg.get_payload()[1].get_payload(decode=True).decode()
    assert "https://tribe.app/session/abc" in html


def test_email_without_smtp_host_fails():
    client = EmailDeliveryClient(host=None)

    result = NotificationDelivery(email=client).deliver(_user(), MESSAGE, "/", channel="email")

    assert not result.success
    assert "SMTP" in result.error


def test_email_smtp_error_is_a_failed_result(monkeypatch):
    class BrokenSMTP(FakeSMTP):
        def send_message(self, msg):
            raise smtplib.SMTPServerDisconnected("connection lost")

    monkeypatch.setattr(smtplib, "SMTP", BrokenSMTP)
    client = EmailDeliveryClient(host="smtp.test")

    result = NotificationDelivery(email=client).deliver(_user(), MESSAGE, "/", channel="email")

    assert not result.success


def test_email_html_is_localized_and_escaped():
    html = render_email_html(_user(name="<Ana>", preferred_language="es"), MESSAGE, "https://tribe.app/")

    assert "Hola &lt;Ana&gt;" in html
    assert "Abrir Tribe" in html


def test_build_delivery_defaults_push_endpoint_to_site():
    settings = Settings(site_url="https://tribe.app", cron_secret=None)

    delivery = build_delivery(settings)

    assert delivery.clients["push"].endpoint == "https://tribe.app/api/notifications/send"
    assert "email" in delivery.clients
