# schemas/message_models.py
import base64
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def to_data_uri(mimetype: str, data: bytes) -> str:
    """Encode raw bytes as a data URI (data:<mimetype>;base64,<payload>)."""
    return f"data:{mimetype};base64,{base64.b64encode(data).decode('ascii')}"


class ImageAttachment(BaseModel):
    """Binary payload uploaded with a submission"""
    model_config = ConfigDict(frozen=True)

    filename: str
    mimetype: str
    size: int = Field(..., ge=0)
    data: bytes = Field(..., repr=False)

    def to_data_uri(self) -> str:
        return to_data_uri(self.mimetype, self.data)


class Submission(BaseModel):
    """
    Client message accepted by the upload endpoint.
    Immutable once created; `webhook_url` always ends with `message_id`.
    """
    model_config = ConfigDict(frozen=True)

    message_id: str
    timestamp: str
    text: str = ""
    image: Optional[ImageAttachment] = None
    webhook_url: str

    @property
    def has_image(self) -> bool:
        return self.image is not None


class ResponsePayload(BaseModel):
    """Worker reply received through the webhook"""
    model_config = ConfigDict(frozen=True)

    text: Optional[str] = None
    image: Optional[str] = Field(None, description="Data URI of the returned file")
    timestamp: str


class StoredEntry(BaseModel):
    """
    Correlation record: one submission and, once the callback arrives,
    its response. Replaced as a whole (never edited in place).
    """
    model_config = ConfigDict(frozen=True)

    submission: Submission
    response: Optional[ResponsePayload] = None
    timestamp: str
    response_timestamp: Optional[str] = None
    stored_at: float = Field(..., description="time.monotonic() at insertion, used for TTL eviction")

    @property
    def message_id(self) -> str:
        return self.submission.message_id

    @property
    def has_response(self) -> bool:
        return self.response is not None
