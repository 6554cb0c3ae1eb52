"""Operator notifications for failed ping cycles."""

from __future__ import annotations

import asyncio
import html
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Sequence

import httpx
import structlog

from keepalive.config import PingerSettings
from keepalive.models import NotificationField, Severity, utcnow


logger = structlog.get_logger(__name__)

COLOR_RED = 15548997
COLOR_ORANGE = 16744192
COLOR_GREEN = 5763719

SEVERITY_COLORS = {
    Severity.CRITICAL: COLOR_RED,
    Severity.WARNING: COLOR_ORANGE,
    Severity.INFO: COLOR_GREEN,
}

# Discord rejects embeds with longer field values.
EMBED_FIELD_VALUE_MAX = 1024
EMBED_MAX_FIELDS = 25


class Notifier(ABC):
    """Sends a structured alert to an operator channel.

    ``notify`` never raises: transport errors are logged and reported as
    ``False``.
    """

    name = "none"

    @property
    def enabled(self) -> bool:
        return False

    @abstractmethod
    async def notify(
        self,
        title: str,
        description: str,
        fields: Sequence[NotificationField] = (),
        severity: Severity = Severity.WARNING,
    ) -> bool: ...


class NullNotifier(Notifier):
    async def notify(self, title, description, fields=(), severity=Severity.WARNING) -> bool:
        logger.info("Notifications disabled; skipping alert", title=title, severity=severity.value)
        return False


class WebhookNotifier(Notifier):
    """Posts a Discord-style embed to a webhook URL."""

    name = "webhook"

    def __init__(self, url: str, *, timeout_seconds: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_payload(
        self,
        title: str,
        description: str,
        fields: Sequence[NotificationField],
        severity: Severity,
    ) -> dict:
        embed = {
            "title": title,
            "description": description,
            "color": SEVERITY_COLORS[severity],
            "fields": [
                {**f.to_dict(), "value": f.value[:EMBED_FIELD_VALUE_MAX]}
                for f in list(fields)[:EMBED_MAX_FIELDS]
            ],
            "timestamp": utcnow().isoformat(),
        }
        return {"embeds": [embed]}

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(self.url, json=payload, timeout=self.timeout_seconds)

    async def notify(self, title, description, fields=(), severity=Severity.WARNING) -> bool:
        payload = self.build_payload(title, description, fields, severity)
        try:
            if self._client is not None:
                resp = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await self._post(client, payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # The exception text can contain the URL and with it the webhook token.
            logger.error("Webhook notification error", error=type(e).__name__)
            return False

        if resp.is_success:
            logger.info("Webhook notification sent", title=title)
            return True
        logger.error("Webhook notification failed", status_code=resp.status_code)
        return False


class EmailNotifier(Notifier):
    """Sends an HTML email over SMTP from a worker thread."""

    name = "email"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        recipients: Sequence[str],
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_seconds: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = [r.strip() for r in recipients if r.strip()]
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.sender and self.recipients)

    def build_message(
        self,
        title: str,
        description: str,
        fields: Sequence[NotificationField],
        severity: Severity,
    ) -> MIMEMultipart:
        rows = "".join(
            "<li><strong>{}</strong><br>{}</li>".format(
                html.escape(f.name),
                html.escape(f.value).replace("\n", "<br>"),
            )
            for f in fields
        )
        body = (
            f"<h2>{html.escape(title)}</h2>"
            f"<p>{html.escape(description).replace(chr(10), '<br>')}</p>"
            + (f"<ul>{rows}</ul>" if rows else "")
            + f"<p><small>Severity: {severity.value} &middot; {utcnow().isoformat()}</small></p>"
        )

        msg = MIMEMultipart("alternative")
        msg["Subject"] = title
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.attach(MIMEText(body, "html"))
        return msg

    def _send(self, msg: MIMEMultipart) -> None:
        if self.port == 465:
            server: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_seconds)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)
        with server:
            if self.use_tls and self.port != 465:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg, from_addr=self.sender, to_addrs=self.recipients)

    async def notify(self, title, description, fields=(), severity=Severity.WARNING) -> bool:
        msg = self.build_message(title, description, fields, severity)
        try:
            await asyncio.to_thread(self._send, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error("Email notification failed: SMTP authentication error", error=str(e))
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email notification failed", error=f"{type(e).__name__}: {e}")
            return False

        logger.info("Email notification sent", title=title, recipients=len(self.recipients))
        return True


class FanoutNotifier(Notifier):
    """Delivers every alert to all configured backends."""

    name = "fanout"

    def __init__(self, notifiers: Sequence[Notifier]):
        self.notifiers = list(notifiers)

    @property
    def enabled(self) -> bool:
        return any(n.enabled for n in self.notifiers)

    async def notify(self, title, description, fields=(), severity=Severity.WARNING) -> bool:
        results = await asyncio.gather(
            *(n.notify(title, description, fields, severity) for n in self.notifiers)
        )
        return all(results)


def build_notifier(settings: PingerSettings) -> Notifier:
    """Pick the notification backend(s) once, from what is configured."""
    backends: list[Notifier] = []
    if settings.webhook_enabled:
        backends.append(WebhookNotifier(settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds))
    if settings.email_enabled:
        backends.append(
            EmailNotifier(
                host=settings.smtp_host,
                port=settings.smtp_port,
                sender=settings.email_from,
                recipients=settings.email_to,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                timeout_seconds=settings.smtp_timeout_seconds,
            )
        )

    if not backends:
        logger.info("Notifications disabled (no webhook URL or SMTP settings)")
        return NullNotifier()
    logger.info("Notifications enabled", backends=[b.name for b in backends])
    if len(backends) == 1:
        return backends[0]
    return FanoutNotifier(backends)
