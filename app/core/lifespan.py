from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.config import settings
from core.logger import logger
from integrations.rabbitmq_client import rabbitmq_publisher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and graceful shutdown.

    Startup launches the RabbitMQ reconnect loop in the background so the
    server accepts requests even while the broker is unreachable.
    """
    logger.info(
        f"Lifespan startup: port={settings.PORT}, "
        f"rabbitmq_enabled={settings.RABBITMQ_ENABLED}, "
        f"queue={settings.RABBITMQ_TOPIC}, "
        f"webhook_base_url={settings.webhook_base_url}"
    )
    await rabbitmq_publisher.start()

    yield

    logger.info("Shutting down gracefully...")
    await rabbitmq_publisher.close()
    logger.info("Lifespan shutdown.")
