# scripts/send_message.py
"""
Submit a message to a running server and wait for the worker's reply.

    python -m scripts.send_message --text "hola"
    python -m scripts.send_message --image photo.png --url http://localhost:3000
"""

import argparse
import asyncio
import base64
import mimetypes
import sys
from pathlib import Path
from typing import Optional

from core.config import settings
from core.logger import logger
from services.response_poller import ImageFile, ResponsePoller


def load_image(path: str) -> ImageFile:
    image_path = Path(path)
    mimetype = mimetypes.guess_type(image_path.name)[0] or "application/octet-stream"
    return image_path.name, image_path.read_bytes(), mimetype


def save_data_uri(data_uri: str, output: str) -> Path:
    """Write the payload of a data:...;base64,... URI to disk."""
    _, _, encoded = data_uri.partition(",")
    path = Path(output)
    path.write_bytes(base64.b64decode(encoded))
    return path


async def run(url: str, text: Optional[str], image: Optional[str], output: Optional[str]) -> int:
    async with ResponsePoller(url) as poller:
        submitted = await poller.submit(
            description=text,
            image=load_image(image) if image else None,
        )
        message_id = submitted["messageId"]
        print(f"Submitted message {message_id}, waiting for response...")

        reply = await poller.wait_for_response(message_id)

    if reply is None:
        print("No response received.")
        return 1

    print(reply.get("text") or "")
    if reply.get("image") and output:
        print(f"Attachment saved to {save_data_uri(reply['image'], output)}")
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Send a chat message and poll for the reply")
    parser.add_argument("--url", default=f"http://localhost:{settings.PORT}", help="Server base URL")
    parser.add_argument("--text", help="Message description")
    parser.add_argument("--image", help="Path to an image to attach")
    parser.add_argument("--output", help="Where to save a returned attachment")
    args = parser.parse_args(argv)

    if not args.text and not args.image:
        parser.error("--text or --image is required")

    try:
        return asyncio.run(run(args.url, args.text, args.image, args.output))
    except Exception as e:
        logger.error(f"send_message failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
