from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Callable, Dict, Mapping, Optional, Protocol

import requests

from .config import Settings
from .errors import ConnectivityError, DeliveryError, NotificationError, UnsupportedProviderError
from .models import NotificationMessage

LOGGER = logging.getLogger(__name__)


class EmailProvider(Protocol):
    name: str

    def send(self, message: NotificationMessage) -> None:
        ...


class GmailProvider:
    """Send through Gmail's SMTP submission endpoint with an app password."""

    name = "gmail"

    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.gmail_address
        self.password = settings.gmail_app_password
        self.sender = settings.from_email or settings.gmail_address

    def _connection(self) -> smtplib.SMTP:
        server = smtplib.SMTP(self.host, self.port, timeout=10)
        try:
            server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
        except Exception:
            server.quit()
            raise
        return server

    def send(self, message: NotificationMessage) -> None:
        if not self.sender:
            raise DeliveryError(self.name, "GMAIL_ADDRESS or NOTIFY_FROM_EMAIL is not configured")

        email = EmailMessage()
        email["Subject"] = message.subject
        email["From"] = self.sender
        email["To"] = message.to
        email.set_content(message.body_text)
        if message.body_html:
            email.add_alternative(message.body_html, subtype="html")

        try:
            with self._connection() as server:
                server.send_message(email)
        except TimeoutError as exc:
            raise ConnectivityError(f"SMTP timed out: {exc}", details=self.name) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(self.name, str(exc)) from exc
        LOGGER.info("Sent email '%s' to %s via gmail", message.subject, message.to)


class MailgunProvider:
    """Send through the Mailgun HTTP messages API."""

    name = "mailgun"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.api_key = settings.mailgun_api_key
        self.domain = settings.mailgun_domain
        self.base_url = settings.mailgun_api_url
        self.sender = settings.from_email or (f"mailgun@{self.domain}" if self.domain else None)
        self.session = session or requests.Session()

    def send(self, message: NotificationMessage) -> None:
        if not self.api_key or not self.domain:
            raise DeliveryError(self.name, "MAILGUN_API_KEY and MAILGUN_DOMAIN must be configured")

        data = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "text": message.body_text,
        }
        if message.body_html:
            data["html"] = message.body_html

        url = f"{self.base_url}/v3/{self.domain}/messages"
        try:
            resp = self.session.post(url, auth=("api", self.api_key), data=data, timeout=10)
        except requests.Timeout as exc:
            raise ConnectivityError(f"Mailgun timed out: {exc}", details=self.name) from exc
        except requests.RequestException as exc:
            raise DeliveryError(self.name, str(exc)) from exc
        if resp.status_code >= 400:
            raise DeliveryError(self.name, f"Mailgun responded with {resp.status_code}: {resp.text[:200]}")
        LOGGER.info("Sent email '%s' to %s via mailgun", message.subject, message.to)


ProviderFactory = Callable[[Settings], EmailProvider]

PROVIDER_FACTORIES: Dict[str, ProviderFactory] = {
    "gmail": GmailProvider,
    "mailgun": MailgunProvider,
}


class ProviderRouter:
    """Route every send through the single backend named by configuration."""

    def __init__(self, provider_name: str, backends: Mapping[str, EmailProvider]):
        self.provider_name = provider_name
        self.backends = dict(backends)

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> None:
        backend = self.backends.get(self.provider_name)
        if backend is None:
            raise UnsupportedProviderError(self.provider_name)

        message = NotificationMessage(to=to, subject=subject, body_text=text, body_html=html)
        try:
            backend.send(message)
        except NotificationError:
            LOGGER.exception("Provider %s failed to send '%s' to %s", self.provider_name, subject, to)
            raise
        except Exception as exc:
            LOGGER.exception("Provider %s failed to send '%s' to %s", self.provider_name, subject, to)
            raise DeliveryError(self.provider_name, str(exc)) from exc


def create_router(settings: Settings, factories: Optional[Mapping[str, ProviderFactory]] = None) -> ProviderRouter:
    """Build a router for ``settings.email_provider``, rejecting unknown names."""
    factories = PROVIDER_FACTORIES if factories is None else factories
    name = settings.email_provider
    if name not in factories:
        raise UnsupportedProviderError(name)
    return ProviderRouter(name, {name: factories[name](settings)})
