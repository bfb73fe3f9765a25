"""Entity event listener.

Subscribes to a Redis pub/sub channel on which the CRM publishes entity
changes. Each message names an automation and the entity that changed:

    {
        "workflow_id": "…",          # automation to fire
        "entity_id": "…",
        "entity_type": "student_profile",
        "event_data": {"status": "at_risk"}
    }

and is handed to the automation runner.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from redis.exceptions import RedisError

from core.exceptions import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass
class EntityEvent:
    """One entity change that may fire an automation."""

    workflow_id: str
    entity_id: str
    entity_type: str
    event_data: dict[str, Any] = field(default_factory=dict)


def parse_event(raw: Union[str, bytes, dict]) -> EntityEvent:
    """Decode a pub/sub payload.

    Raises:
        ValidationError: If the payload is not JSON or lacks a required field
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Event is not UTF-8: {e}") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw else {}
        except json.JSONDecodeError as e:
            raise ValidationError(f"Event is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ValidationError("Event must be a JSON object")

    missing = [k for k in ("workflow_id", "entity_id", "entity_type") if not raw.get(k)]
    if missing:
        raise ValidationError(f"Event missing required field(s): {', '.join(missing)}")

    event_data = raw.get("event_data") or {}
    if not isinstance(event_data, dict):
        raise ValidationError("event_data must be an object")

    return EntityEvent(
        workflow_id=str(raw["workflow_id"]),
        entity_id=str(raw["entity_id"]),
        entity_type=str(raw["entity_type"]),
        event_data=event_data,
    )


EventCallback = Callable[[EntityEvent], Awaitable[Any]]


class EntityEventListener:
    """Background Redis subscriber that forwards entity events."""

    def __init__(
        self,
        channel: str,
        redis_url: str,
        callback: EventCallback,
        client_factory: Optional[Callable[[], Any]] = None,
        retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
    ):
        self.channel = channel
        self.redis_url = redis_url
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._callback = callback
        self._client_factory = client_factory or self._default_client
        self._subscribed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._listen())
        logger.info("Started entity event listener", channel=self.channel)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def handle_message(self, data: Union[str, bytes, dict]) -> Optional[Any]:
        """Parse and dispatch one message.

        Malformed messages and events for unknown automations or entities
        are logged and dropped; the listener keeps running.
        """
        try:
            event = parse_event(data)
        except ValidationError as e:
            logger.warning("Dropping malformed entity event", channel=self.channel, error=e.message)
            return None

        try:
            result = await self._callback(event)
        except NotFoundError as e:
            logger.warning(
                "Entity event references a missing record",
                workflow_id=event.workflow_id,
                entity_id=event.entity_id,
                error=e.message,
            )
            return None
        logger.info(
            "Entity event handled",
            workflow_id=event.workflow_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
        )
        return result

    def _default_client(self):
        import redis.asyncio as aioredis

        return aioredis.from_url(self.redis_url)

    async def _listen(self) -> None:
        """Consume the channel, reconnecting with exponential backoff.

        The delay doubles after each failed attempt up to ``max_retry_delay``
        and drops back to ``retry_delay`` once a subscription has succeeded.
        """
        delay = self.retry_delay
        while True:
            self._subscribed = False
            try:
                await self._consume()
                error = "subscription closed"
            except (RedisError, OSError) as exc:
                error = str(exc)
            if self._subscribed:
                delay = self.retry_delay
            logger.warning(
                "Entity event listener disconnected, reconnecting",
                channel=self.channel,
                error=error,
                retry_in=delay,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)

    async def _consume(self) -> None:
        redis_client = self._client_factory()
        pubsub = redis_client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            self._subscribed = True
            logger.info("Listening on Redis channel", channel=self.channel)

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    await self.handle_message(message["data"])
                except Exception as exc:
                    logger.error(
                        "Entity event handling failed",
                        channel=self.channel,
                        error=str(exc),
                        exc_info=True,
                    )
        except asyncio.CancelledError:
            logger.info("Entity event listener cancelled", channel=self.channel)
            raise
        finally:
            await pubsub.aclose()
            await redis_client.aclose()
