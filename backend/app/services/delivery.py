"""Notification delivery over push and email."""
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
import logging
import re
import smtplib

import httpx

from app.config import Settings
from app.models.user import User
from app.services.exceptions import DeliveryError
from app.services.messages import ResolvedMessage, normalize_language

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one send attempt."""

    success: bool
    channel: str
    error: str | None = None


class PushDeliveryClient:
    """Sends push notifications through the push gateway over HTTP.

    The gateway picks FCM or web push from the user's stored targets, so this
    client only needs the user id and the rendered text.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, recipient: User, message: ResolvedMessage, deep_link: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self._client.post(
                self.endpoint,
                json={
                    "userId": recipient.id,
                    "title": message.title,
                    "body": message.body,
                    "url": deep_link,
                },
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Push gateway unreachable: {e}") from e

        if response.status_code >= 400:
            raise DeliveryError(f"Push gateway returned {response.status_code}: {response.text[:200]}")


class EmailDeliveryClient:
    """Sends notifications as branded HTML email using SMTP."""

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        user: str = "",
        password: str = "",
        from_email: str = "notifications@tribe.app",
        site_url: str = "http://localhost:3000",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.site_url = site_url.rstrip("/")
        self.timeout = timeout

    def send(self, recipient: User, message: ResolvedMessage, deep_link: str) -> None:
        if not self.host:
            raise DeliveryError("SMTP not configured")
        if not recipient.email:
            raise DeliveryError(f"User {recipient.id} has no email address")

        html_content = render_email_html(recipient, message, f"{self.site_url}{deep_link}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.title
        msg["From"] = f"Tribe <{self.from_email}>"
        msg["To"] = recipient.email

        # Plain text fallback
        plain_text = html_content.replace("<br>", "\n").replace("</p>", "\n\n")
        plain_text = re.sub(r"<[^>]+>", "", plain_text)
        plain_text = re.sub(r"\n\s*\n+", "\n\n", plain_text).strip()

        msg.attach(MIMEText(plain_text, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP send failed: {e}") from e


def render_email_html(recipient: User, message: ResolvedMessage, link: str) -> str:
    """Generate HTML content for a notification email."""
    spanish = normalize_language(recipient.preferred_language) == "es"
    tagline = "Nunca Entrenes Solo" if spanish else "Never Train Alone"
    button_text = "Abrir Tribe" if spanish else "Open Tribe"
    greeting = "Hola" if spanish else "Hi"
    if recipient.name:
        greeting += f" {escape(recipient.name)}"
    footer = (
        "Recibiste este email porque tienes las notificaciones activadas en Tribe."
        if spanish
        else "You're receiving this because you have notifications enabled in Tribe."
    )

    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background: #f9fafb; padding: 20px;">
        <div style="background: white; border-radius: 12px; padding: 30px;">
            <h1 style="font-size: 28px; margin: 0; text-align: center;">Tribe<span style="color: #9EE551;">.</span></h1>
            <p style="color: #9EE551; font-weight: 600; text-align: center;">{tagline}</p>
            <h2 style="color: #1e293b;">{escape(message.title)}</h2>
            <p>{greeting},</p>
            <p style="color: #374151; line-height: 1.6;">{escape(message.body)}</p>
            <p style="text-align: center; margin: 30px 0;">
                <a href="{escape(link)}" style="background: #9EE551; color: #1e293b; padding: 14px 32px; text-decoration: none; border-radius: 8px; font-weight: bold;">{button_text}</a>
            </p>
            <p style="margin-top: 24px; padding-top: 16px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 12px;">
                {footer}
            </p>
        </div>
    </body>
    </html>
    """


class NotificationDelivery:
    """Routes a resolved message to the right channel client.

    ``deliver`` never raises: every failure comes back as an unsuccessful
    :class:`DeliveryResult` so one bad recipient cannot stop a batch.
    """

    def __init__(self, push: PushDeliveryClient | None = None, email: EmailDeliveryClient | None = None):
        self.clients = {}
        if push is not None:
            self.clients["push"] = push
        if email is not None:
            self.clients["email"] = email

    def deliver(self, recipient: User, message: ResolvedMessage, deep_link: str, channel: str = "push") -> DeliveryResult:
        client = self.clients.get(channel)
        if client is None:
            logger.warning(f"No delivery client configured for channel '{channel}'")
            return DeliveryResult(success=False, channel=channel, error=f"No {channel} client configured")

        try:
            client.send(recipient, message, deep_link)
        except DeliveryError as e:
            logger.warning(f"Failed to send {channel} notification to user {recipient.id}: {e}")
            return DeliveryResult(success=False, channel=channel, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error sending {channel} notification to user {recipient.id}")
            return DeliveryResult(success=False, channel=channel, error=str(e))

        return DeliveryResult(success=True, channel=channel)


def build_delivery(settings: Settings) -> NotificationDelivery:
    """Build the delivery router from application settings."""
    return NotificationDelivery(
        push=PushDeliveryClient(
            endpoint=settings.resolved_push_endpoint,
            api_key=settings.push_api_key,
            timeout=settings.delivery_timeout_seconds,
        ),
        email=EmailDeliveryClient(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.smtp_from_email,
            site_url=settings.site_url,
            timeout=settings.delivery_timeout_seconds,
        ),
    )
