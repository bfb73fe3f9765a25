"""Notification Manager — central dispatcher for notification channels."""

from typing import Optional

import structlog

from notifications.channels import (
    BaseChannel,
    DeliveryResult,
    EmailChannel,
    Notification,
    NotificationChannel,
)

logger = structlog.get_logger(__name__)


class NotificationManager:
    """Routes notifications to registered channels.

    Singleton in the application — use get_notification_manager().
    """

    def __init__(self):
        self._channels: dict[NotificationChannel, BaseChannel] = {}

    def register_channel(self, channel: BaseChannel) -> None:
        """Register (or replace) a notification channel."""
        self._channels[channel.channel_type] = channel
        logger.info("Notification channel registered", channel=channel.channel_type.value)

    def configure_from_settings(self, settings) -> None:
        """Register the channels the settings provide credentials for."""
        if settings.email_configured:
            self.register_channel(EmailChannel({
                "smtp_host": settings.SMTP_HOST,
                "smtp_port": settings.SMTP_PORT,
                "smtp_user": settings.SMTP_USER,
                "smtp_password": settings.SMTP_PASSWORD,
                "use_tls": settings.SMTP_USE_TLS,
                "from_address": settings.EMAIL_FROM_ADDRESS,
            }))

    def has_channel(self, channel: NotificationChannel) -> bool:
        return channel in self._channels

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through its channel.

        Returns:
            DeliveryResult; an unconfigured channel is a failed result,
            not an exception
        """
        channel = self._channels.get(notification.channel)
        if not channel:
            return DeliveryResult(
                success=False,
                channel=notification.channel,
                recipient=notification.recipient,
                error=f"Channel not configured: {notification.channel.value}",
            )

        result = await channel.send(notification)

        if result.success:
            logger.info(
                "Notification sent",
                channel=notification.channel.value,
                recipient=notification.recipient,
            )
        else:
            logger.warning(
                "Notification failed",
                channel=notification.channel.value,
                error=result.error,
            )

        return result


# Singleton
_manager: Optional[NotificationManager] = None


def get_notification_manager() -> NotificationManager:
    """Get or create the singleton notification manager."""
    global _manager
    if _manager is None:
        from app.config import get_settings

        _manager = NotificationManager()
        _manager.configure_from_settings(get_settings())
    return _manager
