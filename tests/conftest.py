"""
Pytest fixtures for the chat relay tests.

Environment is pinned before any app module is imported: the broker is
disabled and rate limiting is off so tests can hit endpoints freely.
"""

import os

os.environ["RABBITMQ_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from collections.abc import Generator
from typing import List

import pytest
from fastapi.testclient import TestClient

from integrations.rabbitmq_client import get_publisher
from main import app
from schemas.queue_models import QueueEnvelope
from services.message_store import MessageStore, get_message_store

# =============================================================================
# Test doubles
# =============================================================================


class StubPublisher:
    """Records envelopes instead of talking to RabbitMQ."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.published: List[QueueEnvelope] = []

    def is_connected(self) -> bool:
        return self.connected

    async def publish(self, envelope: QueueEnvelope) -> bool:
        if not self.connected:
            return False
        self.published.append(envelope)
        return True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> MessageStore:
    """Fresh, unbounded store per test."""
    return MessageStore()


@pytest.fixture
def publisher() -> StubPublisher:
    return StubPublisher()


@pytest.fixture
def client(store: MessageStore, publisher: StubPublisher) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the per-test store and publisher."""
    app.dependency_overrides[get_message_store] = lambda: store
    app.dependency_overrides[get_publisher] = lambda: publisher
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def png_bytes() -> bytes:
    """Minimal PNG header plus padding; content is never decoded."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
