# routers/router.py
"""
FastAPI Router for message intake, worker callbacks and response polling
"""

from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status
)
from pydantic import ValidationError
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import settings
from core.errors import InvalidPayloadError, MessageNotFoundError
from core.ids import utc_now_iso
from core.logger import logger
from core.rate_limiter import limit_param, limiter
from integrations.rabbitmq_client import RabbitMQPublisher, get_publisher
from schemas.api_models import (
    DebugMessagesResponse,
    HealthResponse,
    MessageSummary,
    ResolutionData,
    ResolutionResponse,
    UploadData,
    UploadResponse,
    WebhookAck,
    WebhookJsonBody,
)
from services.message_service import MessageService, get_message_service
from services.message_store import MessageStore, get_message_store
from utils.log_event import log_event


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

router = APIRouter(
    tags=["Chat Relay"],
    responses={
        429: {"description": "Too Many Requests"},
        500: {"description": "Internal Server Error"}
    }
)


# ============================================================================
# HEALTH CHECK ENDPOINTS
# ============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Service Health Check",
    description="Reports whether the RabbitMQ channel is currently open"
)
async def check_health(
    publisher: RabbitMQPublisher = Depends(get_publisher)
) -> HealthResponse:
    connected = publisher.is_connected()
    return HealthResponse(
        status="ok",
        rabbitmq="connected" if connected else "disconnected",
        rabbitmq_connected=connected,
        timestamp=utc_now_iso(),
    )


# ============================================================================
# INGRESS ENDPOINTS
# ============================================================================

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit Chat Message",
    description="Accepts a description and/or an image and queues it for the worker",
    responses={400: {"description": "Missing content or invalid image"}}
)
@limiter.limit(limit_param)
async def upload_message(
    request: Request,
    background_tasks: BackgroundTasks,
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    service: MessageService = Depends(get_message_service),
    publisher: RabbitMQPublisher = Depends(get_publisher)
) -> UploadResponse:
    """
    Store a chat message and hand it to the worker.

    Process:
    1. Validate the image (image/* only, size ceiling)
    2. Mint a message ID and store the pending entry
    3. Publish the envelope after the response is sent

    The broker being down does not fail the request: the message is still
    stored and can be polled, the worker just never sees it.
    """
    try:
        attachment = await service.read_image(image)
        submission, envelope = service.accept(description, attachment)
    except InvalidPayloadError:
        raise
    except Exception as e:
        logger.exception(f"Upload failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process message"
        )

    background_tasks.add_task(publisher.publish, envelope)

    return UploadResponse(
        data=UploadData(
            message_id=submission.message_id,
            has_image=submission.has_image,
            description=submission.text,
            timestamp=submission.timestamp,
        )
    )


# ============================================================================
# WEBHOOK ENDPOINTS
# ============================================================================

@router.post(
    "/webhook/response/{message_id}",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Worker Response Callback",
    description=(
        "Multipart body with optional `text` field and optional `data` file "
        "(any media type). A JSON body `{text, image}` is accepted as well."
    ),
    responses={404: {"description": "Message ID not found"}}
)
@limiter.limit(limit_param)
async def receive_webhook_response(
    message_id: str,
    request: Request,
    service: MessageService = Depends(get_message_service)
) -> WebhookAck:
    """
    Attach the worker reply to the stored message.
    Unknown IDs are answered with 404 and dropped.
    """
    content_type = request.headers.get("content-type", "")

    try:
        if content_type.startswith("application/json"):
            try:
                body = WebhookJsonBody.model_validate(await request.json())
            except (ValueError, ValidationError):
                raise InvalidPayloadError("Invalid JSON body")
            response = await service.build_response(body.text, image_data_uri=body.image)
        else:
            async with request.form() as form:
                text = form.get("text")
                upload = form.get("data")
                response = await service.build_response(
                    text if isinstance(text, str) else None,
                    upload if isinstance(upload, StarletteUploadFile) else None,
                )

        log_event(
            "webhook_received",
            message_id=message_id,
            content_type=content_type.split(";")[0],
            text=response.text,
            has_file=response.image is not None,
            user_agent=request.headers.get("user-agent"),
        )

        service.record_response(message_id, response)

    except (InvalidPayloadError, MessageNotFoundError, StarletteHTTPException):
        raise
    except Exception as e:
        logger.exception(f"Webhook error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process webhook response"
        )

    return WebhookAck(message_id=message_id)


# ============================================================================
# RESOLUTION ENDPOINTS
# ============================================================================

@router.get(
    "/api/response/{message_id}",
    response_model=ResolutionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Message Response",
    description="Polled by clients until `hasResponse` becomes true",
    responses={404: {"description": "Message ID not found"}}
)
async def get_response(
    message_id: str,
    service: MessageService = Depends(get_message_service)
) -> ResolutionResponse:
    try:
        entry = service.resolve(message_id)
    except MessageNotFoundError:
        raise
    except Exception as e:
        logger.exception(f"API error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get response"
        )

    return ResolutionResponse(
        data=ResolutionData(
            message_id=entry.message_id,
            has_response=entry.has_response,
            response=entry.response,
            response_timestamp=entry.response_timestamp,
        )
    )


# ============================================================================
# DEBUG ENDPOINTS
# ============================================================================

@router.get(
    "/api/debug/messages",
    response_model=DebugMessagesResponse,
    status_code=status.HTTP_200_OK,
    summary="List Stored Messages",
    description="Summary of every message currently held in memory"
)
async def list_messages(
    store: MessageStore = Depends(get_message_store)
) -> DebugMessagesResponse:
    if not settings.ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    messages = [
        MessageSummary(
            message_id=entry.message_id,
            has_response=entry.has_response,
            timestamp=entry.timestamp,
            response_timestamp=entry.response_timestamp,
        )
        for entry in store.list_entries()
    ]
    return DebugMessagesResponse(total_messages=len(messages), messages=messages)
