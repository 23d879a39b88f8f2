# schemas/api_models.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional

from schemas.message_models import ResponsePayload


class CamelModel(BaseModel):
    """Base for HTTP payloads: snake_case in Python, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# HEALTH
# ============================================================================

class HealthResponse(CamelModel):
    """Health check response"""
    status: str = "ok"
    rabbitmq: Literal["connected", "disconnected"]
    rabbitmq_connected: bool
    timestamp: str


# ============================================================================
# UPLOAD
# ============================================================================

class UploadData(CamelModel):
    message_id: str
    has_image: bool
    description: str
    timestamp: str


class UploadResponse(CamelModel):
    success: bool = True
    message: str = "Message processed successfully"
    data: UploadData

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "message": "Message processed successfully",
                "data": {
                    "messageId": "1718000000000-k3j9x0a1b",
                    "hasImage": False,
                    "description": "hola",
                    "timestamp": "2024-06-10T06:13:20.000Z"
                }
            }
        }
    )


# ============================================================================
# WEBHOOK
# ============================================================================

class WebhookJsonBody(BaseModel):
    """JSON variant of the webhook body, for workers that do not send multipart"""
    text: Optional[str] = None
    image: Optional[str] = Field(None, description="Data URI of the returned file")


class WebhookAck(CamelModel):
    success: bool = True
    message: str = "Response received and stored"
    message_id: str


# ============================================================================
# RESOLUTION
# ============================================================================

class ResolutionData(CamelModel):
    message_id: str
    has_response: bool
    response: Optional[ResponsePayload] = None
    response_timestamp: Optional[str] = None


class ResolutionResponse(CamelModel):
    success: bool = True
    data: ResolutionData


# ============================================================================
# DEBUG
# ============================================================================

class MessageSummary(CamelModel):
    message_id: str
    has_response: bool
    timestamp: str
    response_timestamp: Optional[str] = None


class DebugMessagesResponse(CamelModel):
    success: bool = True
    total_messages: int
    messages: List[MessageSummary]
