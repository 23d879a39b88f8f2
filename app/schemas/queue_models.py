# app/schemas/queue_models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Literal, Optional

from schemas.message_models import Submission


class EnvelopeContent(BaseModel):
    text: str = ""
    image: Optional[str] = None  # data URI, null when no image was sent


class QueueEnvelope(BaseModel):
    """
    Message published to the broker and consumed by the worker.
    Field names and nesting are the worker's contract; keep them stable.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: str
    type: Literal["chat_message"] = "chat_message"
    content: EnvelopeContent
    metadata: Dict[str, Any] = Field(default_factory=dict)  # {} when no image
    webhook_url: str = Field(..., alias="webhookUrl")

    @classmethod
    def from_submission(cls, submission: Submission) -> "QueueEnvelope":
        image = submission.image
        metadata: Dict[str, Any] = {}
        if image is not None:
            metadata = {
                "filename": image.filename,
                "size": image.size,
                "mimetype": image.mimetype,
            }

        return cls(
            id=submission.message_id,
            timestamp=submission.timestamp,
            content=EnvelopeContent(
                text=submission.text,
                image=image.to_data_uri() if image is not None else None,
            ),
            metadata=metadata,
            webhook_url=submission.webhook_url,
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
