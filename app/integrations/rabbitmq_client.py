# app/integrations/rabbitmq_client.py
"""
RabbitMQ publisher with a background reconnect loop.

This module provides a singleton publisher that:
1. Keeps at most one connection/channel for the process
2. Declares the destination queue as durable + quorum
3. Retries failed connections every RABBITMQ_RECONNECT_DELAY_SECS, forever
4. Turns publishes into logged no-ops while disconnected

Publishing never raises: the upload endpoint accepts messages even when the
broker is unreachable.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection

from core.config import Settings, settings
from core.logger import logger
from schemas.queue_models import QueueEnvelope
from utils.log_event import log_event


class RabbitMQConfigError(RuntimeError):
    """Broker enabled without the settings needed to reach it"""


class RabbitMQPublisher:
    """
    Owns the broker connection and the reconnect loop.

    Lifecycle:
        await publisher.start()     # on application startup
        await publisher.publish(envelope)
        publisher.is_connected()
        await publisher.close()     # on application shutdown
    """

    def __init__(
        self,
        config: Settings = settings,
        connect: Callable[..., Awaitable[AbstractConnection]] = aio_pika.connect
    ):
        self.config = config
        self._connect = connect
        self._connection: Optional[AbstractConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._task: Optional[asyncio.Task] = None
        self._connection_lost: Optional[asyncio.Event] = None
        self._closing = False

    @property
    def queue_name(self) -> str:
        return self.config.RABBITMQ_TOPIC

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        """Launch the connect/reconnect loop as a background task."""
        if self._task is not None and not self._task.done():
            return

        self._closing = False
        self._connection_lost = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="rabbitmq-reconnect-loop")

    async def _run(self) -> None:
        while not self._closing:
            if not self.config.RABBITMQ_ENABLED:
                logger.info("RabbitMQ is disabled")
                return

            if await self.connect():
                # Park until the broker drops the connection or the channel,
                # then fall through to the retry delay
                await self._wait_until_lost()
                await self._drop_connection()
                if self._closing:
                    return

            delay = self.config.RABBITMQ_RECONNECT_DELAY_SECS
            logger.info(f"Retrying RabbitMQ connection in {delay}s")
            await asyncio.sleep(delay)

    async def _wait_until_lost(self) -> None:
        # Close callbacks are not guaranteed for every channel-level failure,
        # so the channel state is also checked once per reconnect delay
        delay = self.config.RABBITMQ_RECONNECT_DELAY_SECS
        while not self._connection_lost.is_set():
            try:
                await asyncio.wait_for(self._connection_lost.wait(), timeout=delay)
            except asyncio.TimeoutError:
                if not self.is_connected():
                    logger.warning("RabbitMQ channel closed, dropping connection")
                    break
        self._connection_lost.clear()

    async def _drop_connection(self) -> None:
        connection = self._connection
        self._channel = None
        self._connection = None
        if connection is not None and not self._closing:
            await self._close_quietly(connection)

    async def connect(self) -> bool:
        """
        Single connection attempt.

        Returns:
            bool: True once the channel is open and the queue declared
        """
        connection: Optional[AbstractConnection] = None
        try:
            uri = self.config.RABBITMQ_URI
            if not uri:
                raise RabbitMQConfigError("RABBITMQ_URI environment variable is required")

            logger.info("Connecting to RabbitMQ...")
            connection = await self._connect(uri)
            channel = await connection.channel()
            await channel.declare_queue(
                self.queue_name,
                durable=True,
                arguments={"x-queue-type": self.config.RABBITMQ_QUEUE_TYPE},
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"RabbitMQ connection error: {e}")
            if connection is not None:
                await self._close_quietly(connection)
            return False

        connection.close_callbacks.add(self._on_connection_closed)
        channel.close_callbacks.add(self._on_channel_closed)
        self._connection = connection
        self._channel = channel
        logger.info(f"Connected to RabbitMQ queue: {self.queue_name}")
        return True

    def _on_connection_closed(self, sender: Any, exc: Optional[BaseException] = None) -> None:
        if self._closing or sender is not self._connection:
            return

        logger.warning(f"RabbitMQ connection lost: {exc}")
        self._channel = None
        self._connection = None
        if self._connection_lost is not None:
            self._connection_lost.set()

    def _on_channel_closed(self, sender: Any, exc: Optional[BaseException] = None) -> None:
        if self._closing or sender is not self._channel:
            return

        # The connection may still be open; _run closes it before reconnecting
        logger.warning(f"RabbitMQ channel closed: {exc}")
        self._channel = None
        if self._connection_lost is not None:
            self._connection_lost.set()

    async def close(self) -> None:
        """
        Stop the reconnect loop and close channel and connection
        (called on application shutdown).
        """
        self._closing = True

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None

        if channel is not None:
            await self._close_quietly(channel)
        if connection is not None:
            await self._close_quietly(connection)
            logger.info("RabbitMQ connection closed")

    @staticmethod
    async def _close_quietly(resource: Any) -> None:
        try:
            await resource.close()
        except Exception as e:
            logger.warning(f"Error while closing RabbitMQ resource: {e}")

    # ========================================================================
    # PUBLISH / HEALTH
    # ========================================================================

    def is_connected(self) -> bool:
        return self._channel is not None and not self._channel.is_closed

    async def publish(self, envelope: QueueEnvelope) -> bool:
        """
        Publish an envelope as a persistent JSON message.

        Returns:
            bool: True if the broker accepted the message, False when
            disconnected or when the publish failed (never raises)
        """
        channel = self._channel
        if channel is None or channel.is_closed:
            logger.warning(f"RabbitMQ not available, message not sent: {envelope.id}")
            return False

        body = json.dumps(envelope.to_wire(), separators=(",", ":"), ensure_ascii=False)
        payload = body.encode("utf-8")
        message = aio_pika.Message(
            body=payload,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            timestamp=datetime.now(timezone.utc),
            message_id=envelope.id,
        )

        try:
            await channel.default_exchange.publish(message, routing_key=self.queue_name)
        except Exception as e:
            logger.error(f"RabbitMQ publish failed: message_id={envelope.id}, error={e}")
            return False

        log_event(
            "message_published",
            message_id=envelope.id,
            queue=self.queue_name,
            has_image=envelope.content.image is not None,
            description=envelope.content.text or "No description",
            webhook_url=envelope.webhook_url,
            body_bytes=len(payload),
        )
        return True


"""
Global publisher instance (singleton)
"""
rabbitmq_publisher = RabbitMQPublisher()


def get_publisher() -> RabbitMQPublisher:
    """
    Get the publisher for dependency injection.

    Usage in FastAPI:
        publisher: RabbitMQPublisher = Depends(get_publisher)
    """
    return rabbitmq_publisher
