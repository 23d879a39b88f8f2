# services/response_poller.py
"""
Client for the submit-then-poll protocol.

After a successful upload the client waits an initial delay, then polls
GET /api/response/{messageId} at a fixed interval for a bounded number of
attempts. Running out of attempts is not an error: the poller just returns
None, the same way the browser UI silently stops waiting.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from core.config import settings
from core.logger import logger

# (filename, content, mimetype)
ImageFile = Tuple[str, bytes, str]


class ResponsePoller:
    """
    Async HTTP client for a chat relay server.

    Usage:
        async with ResponsePoller("http://localhost:3000") as poller:
            reply = await poller.send_and_wait(description="hola")
    """

    def __init__(
        self,
        base_url: str,
        initial_delay: float = settings.POLL_INITIAL_DELAY_SECS,
        interval: float = settings.POLL_INTERVAL_SECS,
        max_attempts: int = settings.POLL_MAX_ATTEMPTS,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timeout: float = 10.0
    ):
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def __aenter__(self) -> "ResponsePoller":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def submit(
        self,
        description: Optional[str] = None,
        image: Optional[ImageFile] = None
    ) -> Dict[str, Any]:
        """
        POST /upload.

        Returns:
            The `data` block of the upload response (messageId, hasImage, ...)

        Raises:
            httpx.HTTPStatusError: The server rejected the submission
        """
        data = {"description": description} if description else {}
        files = {"image": image} if image is not None else None

        response = await self.client.post("/upload", data=data, files=files)
        response.raise_for_status()
        return response.json()["data"]

    async def check(self, message_id: str) -> Optional[Dict[str, Any]]:
        """
        One poll. Returns the `data` block when the server answered with
        success, None otherwise (unknown ID, server error).
        """
        response = await self.client.get(f"/api/response/{message_id}")
        if response.status_code != httpx.codes.OK:
            logger.debug(f"Poll for {message_id} returned {response.status_code}")
            return None

        body = response.json()
        if not body.get("success"):
            return None
        return body.get("data")

    async def wait_for_response(self, message_id: str) -> Optional[Dict[str, Any]]:
        """
        Poll until the worker reply shows up or the attempt budget runs out.

        Returns:
            The stored response ({text, image, timestamp}) or None
        """
        await self._sleep(self.initial_delay)

        for attempt in range(1, self.max_attempts + 1):
            try:
                data = await self.check(message_id)
            except httpx.HTTPError as e:
                logger.error(f"Error polling for response: message_id={message_id}, error={e}")
                return None

            if data and data.get("hasResponse"):
                logger.info(f"Response received for {message_id} after {attempt} poll(s)")
                return data.get("response")

            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        logger.info(f"Max polling attempts reached for message: {message_id}")
        return None

    async def send_and_wait(
        self,
        description: Optional[str] = None,
        image: Optional[ImageFile] = None
    ) -> Optional[Dict[str, Any]]:
        submitted = await self.submit(description=description, image=image)
        return await self.wait_for_response(submitted["messageId"])
