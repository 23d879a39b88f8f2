import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from routers.router import router
from core.lifespan import lifespan
from core.config import settings
from core.errors import (
    InvalidPayloadError,
    MessageNotFoundError,
    http_exception_handler,
    invalid_payload_handler,
    message_not_found_handler,
)
from core.logger import logger
from core.rate_limiter import limiter

# CORS configuration
if settings.ENABLE_CORS:
    origins = [settings.FRONTEND_ENDPOINT]
else:
    origins = ["*"]

# Initialize FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Correlates chat messages handed to an asynchronous worker (via RabbitMQ)
    with the worker's webhook reply.

    ## Endpoints

    **POST /upload** - Submit a message
    - `description` (optional): Message text
    - `image` (optional): Image file (image/*, up to 10 MiB)

    At least one of the two is required. The response carries the `messageId`.

    **POST /webhook/response/{messageId}** - Worker callback
    - `text` (optional): Reply text
    - `data` (optional): Reply file, any media type

    **GET /api/response/{messageId}** - Poll for the reply
    - `hasResponse` turns true once the worker has called back

    ### Polling
    Clients wait 2 s after submitting, then poll every 2 s, up to 30 attempts.
    """,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Error rendering
app.add_exception_handler(MessageNotFoundError, message_not_found_handler)
app.add_exception_handler(InvalidPayloadError, invalid_payload_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

# Request/Response logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    log_data = {
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": int(duration * 1000),
        "client": request.client.host if request.client else "unknown"
    }

    # Only log non-health-check requests
    if request.url.path != "/health":
        logger.info(f"Request: {log_data}")

    return response

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=settings.ENABLE_CORS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "status": "running",
        "documentation": "/docs"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT)
