"""Channel providers (SMS via Twilio, email via SMTP).

Providers raise :class:`DispatchError` on failure; converting that into a
status value is the dispatcher's job. When a provider has no credentials it
logs the message it would have sent and reports success, so a development
deployment still exercises the whole pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
import time
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

import httpx
import requests

from . import config
from .errors import DispatchError
from .messages import validate_email, validate_phone_number
from .models.rules import Channel

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
_MAX_RETRIES = 2
_RETRY_DELAY = 0.5


@dataclass(frozen=True)
class OutboundMessage:
    subject: str
    body: str
    html: str | None = None


class ChannelProvider(Protocol):
    channel: Channel

    async def send(self, destination: str, message: OutboundMessage) -> None: ...


def _request_with_retry(
    url: str,
    auth: tuple[str, str],
    timeout: float,
    max_retries: int = _MAX_RETRIES,
) -> requests.Response:
    """HTTP GET with retry on timeouts, connection errors and 5xx."""
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            resp = requests.get(url, auth=auth, timeout=timeout)
            if resp.status_code >= 500 and attempt < max_retries:
                time.sleep(_RETRY_DELAY * (attempt + 1))
                continue
            return resp
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            last_error = e
            if attempt < max_retries:
                time.sleep(_RETRY_DELAY * (attempt + 1))
                continue
            raise
    if last_error:
        raise last_error
    raise RuntimeError("Request failed after retries")


class SmsChannel:
    """Send SMS through the Twilio Messages REST API."""

    channel = Channel.SMS

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        timeout: float | None = None,
        base_url: str = TWILIO_API_URL,
    ) -> None:
        self.account_sid = account_sid or config.settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or config.settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or config.settings.TWILIO_FROM_NUMBER
        self.timeout = timeout if timeout is not None else config.DISPATCH_TIMEOUT_S
        self.base_url = base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, destination: str, message: OutboundMessage) -> None:
        to_number = validate_phone_number(destination)
        if to_number is None:
            raise DispatchError(self.channel.value, f"Invalid phone number: {destination!r}")

        if not self.is_configured():
            logger.info(
                "SMS content (Twilio not configured): to=%s message=%r",
                to_number,
                message.body,
            )
            return

        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        payload = {"To": to_number, "From": self.from_number, "Body": message.body}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url, data=payload, auth=(self.account_sid, self.auth_token)
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.info("SMS content (send failed): to=%s message=%r", to_number, message.body)
            raise DispatchError(self.channel.value, f"Twilio request failed: {exc}") from exc
        except ValueError as exc:
            raise DispatchError(self.channel.value, f"Invalid Twilio response: {exc}") from exc
        logger.info("SMS sent to %s (sid=%s)", to_number, data.get("sid"))

    def check_connection(self) -> dict[str, Any]:
        """Fetch the Twilio account to verify credentials."""
        if not self.is_configured():
            return {"success": False, "error": "Twilio client not configured"}
        url = f"{self.base_url}/Accounts/{self.account_sid}.json"
        try:
            resp = _request_with_retry(
                url, (self.account_sid, self.auth_token), timeout=self.timeout
            )
        except requests.RequestException as exc:
            return {"success": False, "error": str(exc)}
        if not resp.ok:
            return {"success": False, "error": f"HTTP {resp.status_code}"}
        data = resp.json()
        return {
            "success": True,
            "accountSid": data.get("sid"),
            "friendlyName": data.get("friendly_name"),
            "status": data.get("status"),
        }


class EmailChannel:
    """Send email via SMTP (STARTTLS, or implicit TLS on port 465)."""

    channel = Channel.EMAIL

    def __init__(
        self,
        smtp_server: str | None = None,
        smtp_port: int | None = None,
        smtp_username: str | None = None,
        smtp_password: str | None = None,
        from_address: str | None = None,
        use_tls: bool = True,
        timeout: float | None = None,
    ) -> None:
        self.smtp_server = smtp_server or config.settings.SMTP_SERVER
        self.smtp_port = smtp_port or config.settings.SMTP_PORT
        self.smtp_username = smtp_username or config.settings.SMTP_USERNAME
        self.smtp_password = smtp_password or config.settings.SMTP_PASSWORD
        self.from_address = from_address or config.settings.ALERT_EMAIL_FROM
        self.use_tls = use_tls
        self.timeout = timeout if timeout is not None else config.DISPATCH_TIMEOUT_S

    def is_configured(self) -> bool:
        return bool(self.smtp_server)

    def _build(self, destination: str, message: OutboundMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.from_address or f"alerts@{self.smtp_server}"
        msg["To"] = destination
        msg.attach(MIMEText(message.body, "plain"))
        if message.html:
            msg.attach(MIMEText(message.html, "html"))
        return msg

    def _send_sync(self, destination: str, message: OutboundMessage) -> None:
        msg = self._build(destination, message)
        if self.smtp_port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(
                self.smtp_server, self.smtp_port, context=context, timeout=self.timeout
            ) as server:
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.sendmail(msg["From"], [destination], msg.as_string())
        else:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.sendmail(msg["From"], [destination], msg.as_string())

    async def send(self, destination: str, message: OutboundMessage) -> None:
        if not validate_email(destination):
            raise DispatchError(self.channel.value, f"Invalid email address: {destination!r}")

        if not self.is_configured():
            logger.info(
                "Email content (SMTP not configured): to=%s subject=%r",
                destination,
                message.subject,
            )
            return

        try:
            await asyncio.to_thread(self._send_sync, destination, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DispatchError(self.channel.value, f"SMTP send failed: {exc}") from exc
        logger.info("Email sent to %s", destination)


def default_providers() -> dict[Channel, ChannelProvider]:
    return {Channel.SMS: SmsChannel(), Channel.EMAIL: EmailChannel()}
