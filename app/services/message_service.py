# services/message_service.py
"""
Message intake and response recording.

Sits between the HTTP routes and the MessageStore:
- validates uploads (image type, size ceiling, non-empty submission)
- mints message IDs and builds the Submission / QueueEnvelope pair
- turns webhook payloads into ResponsePayload records
"""

from typing import Optional, Tuple

from fastapi import Depends, UploadFile, status

from core.config import Settings, settings
from core.errors import InvalidPayloadError
from core.ids import generate_message_id, utc_now_iso
from core.logger import logger
from schemas.message_models import (
    ImageAttachment,
    ResponsePayload,
    StoredEntry,
    Submission,
    to_data_uri,
)
from schemas.queue_models import QueueEnvelope
from services.message_store import MessageStore, get_message_store
from utils.log_event import log_event

MAX_ID_ATTEMPTS = 5
FALLBACK_MIMETYPE = "application/octet-stream"


def is_empty_upload(upload: Optional[UploadFile]) -> bool:
    """A multipart file part with no filename counts as no file at all."""
    return upload is None or not upload.filename


async def read_upload(upload: UploadFile, max_bytes: int, too_large_status: int) -> bytes:
    """
    Read an upload fully, refusing anything above max_bytes.
    At most max_bytes + 1 bytes are pulled into memory.
    """
    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise InvalidPayloadError(
            f"File too large: limit is {max_bytes} bytes",
            status_code=too_large_status,
        )
    return data


class MessageService:
    """
    Coordinates the store for the upload, webhook and polling endpoints.
    """

    def __init__(self, store: MessageStore, config: Settings = settings):
        self.store = store
        self.config = config

    def webhook_url_for(self, message_id: str) -> str:
        return f"{self.config.webhook_base_url}/webhook/response/{message_id}"

    # ========================================================================
    # INGRESS
    # ========================================================================

    async def read_image(self, upload: Optional[UploadFile]) -> Optional[ImageAttachment]:
        """
        Validate and load an uploaded image.

        Raises:
            InvalidPayloadError: Non-image media type or size above the ceiling
        """
        if is_empty_upload(upload):
            return None

        content_type = upload.content_type or ""
        if not content_type.startswith("image/"):
            raise InvalidPayloadError("Only image files are allowed!")

        data = await read_upload(
            upload,
            self.config.MAX_UPLOAD_BYTES,
            too_large_status=status.HTTP_400_BAD_REQUEST,
        )
        return ImageAttachment(
            filename=upload.filename,
            mimetype=content_type,
            size=len(data),
            data=data,
        )

    def accept(
        self,
        description: Optional[str],
        image: Optional[ImageAttachment]
    ) -> Tuple[Submission, QueueEnvelope]:
        """
        Register a new submission in the store.

        Returns:
            The stored Submission and the envelope to publish

        Raises:
            InvalidPayloadError: Neither description nor image supplied
        """
        if not description and image is None:
            raise InvalidPayloadError("Description or image is required")

        for _ in range(MAX_ID_ATTEMPTS):
            message_id = generate_message_id()
            submission = Submission(
                message_id=message_id,
                timestamp=utc_now_iso(),
                text=description or "",
                image=image,
                webhook_url=self.webhook_url_for(message_id),
            )
            if self.store.add(submission) is not None:
                break
        else:
            raise RuntimeError(f"Could not allocate a unique message ID after {MAX_ID_ATTEMPTS} attempts")

        log_event(
            "message_stored",
            message_id=submission.message_id,
            has_image=submission.has_image,
            description=submission.text or "No description",
            webhook_url=submission.webhook_url,
        )
        return submission, QueueEnvelope.from_submission(submission)

    # ========================================================================
    # CALLBACK
    # ========================================================================

    async def build_response(
        self,
        text: Optional[str],
        upload: Optional[UploadFile] = None,
        image_data_uri: Optional[str] = None
    ) -> ResponsePayload:
        """
        Build the stored response from a webhook call.
        Any media type is accepted for the attachment.
        """
        image = image_data_uri
        if not is_empty_upload(upload):
            data = await read_upload(
                upload,
                self.config.MAX_UPLOAD_BYTES,
                too_large_status=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
            image = to_data_uri(upload.content_type or FALLBACK_MIMETYPE, data)
            logger.debug(
                f"Webhook file: filename={upload.filename}, "
                f"mimetype={upload.content_type}, size={len(data)}"
            )

        return ResponsePayload(
            text=text or self.config.DEFAULT_RESPONSE_TEXT,
            image=image,
            timestamp=utc_now_iso(),
        )

    def record_response(self, message_id: str, response: ResponsePayload) -> StoredEntry:
        """
        Raises:
            MessageNotFoundError: Unknown message ID (callback is dropped)
        """
        entry = self.store.attach_response(message_id, response)
        log_event(
            "response_stored",
            message_id=message_id,
            text=response.text,
            has_image=response.image is not None,
        )
        return entry

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    def resolve(self, message_id: str) -> StoredEntry:
        """
        Raises:
            MessageNotFoundError: Unknown message ID
        """
        return self.store.get(message_id)


def get_message_service(store: MessageStore = Depends(get_message_store)) -> MessageService:
    return MessageService(store)
