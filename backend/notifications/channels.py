"""Notification channel implementations.

Each channel handles delivery for one transport. The NotificationManager
dispatches to the appropriate channel. In-app notifications are not a
channel: they are CRM records written through the entity store.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    EMAIL = "email"


@dataclass
class Notification:
    """A message to be delivered."""
    title: str
    message: str
    channel: NotificationChannel
    recipient: str = ""  # email address
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for notification channels."""

    channel_type: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through this channel."""
        ...


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send email through SMTP.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    channel_type = NotificationChannel.EMAIL

    def __init__(self, config: dict = None):
        self.config = config or {}

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send an email. SMTP errors become a failed DeliveryResult."""
        if not notification.recipient:
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient="",
                error="No recipient address",
            )
        try:
            from_addr = self.config.get("from_address", "noreply@localhost")

            msg = MIMEMultipart("alternative")
            msg["Subject"] = notification.title
            msg["From"] = from_addr
            msg["To"] = notification.recipient
            msg.attach(MIMEText(notification.message, "plain"))

            # smtplib blocks; keep it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self._send_smtp(from_addr, notification.recipient, msg),
            )

            return DeliveryResult(
                success=True,
                channel=self.channel_type,
                recipient=notification.recipient,
                message="Email sent",
                delivered_at=datetime.now(timezone.utc).isoformat(),
            )

        except Exception as e:
            logger.error("Email send failed", recipient=notification.recipient, error=str(e))
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=notification.recipient,
                error=str(e),
            )

    def _send_smtp(self, from_addr, to_addr, msg):
        """Synchronous SMTP send."""
        host = self.config.get("smtp_host", "localhost")
        port = self.config.get("smtp_port", 587)
        user = self.config.get("smtp_user", "")
        password = self.config.get("smtp_password", "")
        with smtplib.SMTP(host, port) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, to_addr, msg.as_string())
