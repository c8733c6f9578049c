import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Callable, Literal, Optional

from fastapi import FastAPI, Response, Request, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from watihook.config import settings
from watihook.errors import OutboundSendFailedError, WatihookError
from watihook.ledger import WebhookLedger
from watihook.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data, get_request_id
from watihook.metrics import get_metrics, get_metrics_content_type
from watihook.pipeline import Deadline, OutboundMessenger, ingest_event, run_bounded
from watihook.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageView,
    OutboundMessageResponse,
    SessionMessageRequest,
    WebhookEventView,
    WebhookResponse,
)
from watihook.storage import SessionLocal, engine, init_db, check_db_health, get_db, index_ready
from watihook.store import MessageStore
from watihook.wati_client import WatiClient


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables and indexes.
    Shutdown: release pooled database connections once in-flight requests drained.
    """
    init_db()
    yield
    engine.dispose()
    logger.info("Database connections closed")


app = FastAPI(
    title="WATI Webhook Service",
    description="Ingests WATI webhook events into a canonical WhatsApp message history",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, error: str, detail: Optional[Any] = None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(WatihookError)
async def watihook_error_handler(request: Request, exc: WatihookError) -> JSONResponse:
    """Store, timeout and outbound failures become 500 {error}."""
    logger.error(
        f"Request failed: {exc.message}",
        extra={"error_type": type(exc).__name__, "request_id": get_request_id()},
    )
    detail = exc.detail if isinstance(exc, OutboundSendFailedError) else None
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message, detail)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        f"Unhandled error on {request.method} {request.url.path}",
        extra={"error_type": type(exc).__name__, "request_id": get_request_id()},
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# =============================================================================
# Dependencies
# =============================================================================

def get_message_store(db: Session = Depends(get_db)) -> MessageStore:
    return MessageStore(db)


def get_session_factory() -> Callable[[], Session]:
    """Webhook processing opens its session inside the worker thread."""
    return SessionLocal


def get_wati_client() -> WatiClient:
    return WatiClient(
        base_url=settings.WATI_BASE_URL,
        api_token=settings.WATI_API_TOKEN,
        channel_number=settings.WATI_CHANNEL_NUMBER,
        timeout=settings.OUTBOUND_TIMEOUT_SECONDS,
    )


def get_messenger(
    messages: MessageStore = Depends(get_message_store),
    client: WatiClient = Depends(get_wati_client),
) -> OutboundMessenger:
    return OutboundMessenger(client, messages, store_timeout=settings.STORE_TIMEOUT_SECONDS)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness check - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response, db: Session = Depends(get_db)) -> HealthResponse:
    """
    Readiness check - returns 200 only if the DB is reachable and the
    message tables exist, otherwise 503. Also reports whether the
    composite thread index is built (reads still work without it).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready", index_ready=index_ready(db))


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Body is not valid JSON"},
        500: {"model": ErrorResponse, "description": "Processing failed"},
    }
)
async def webhook(
    request: Request,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> WebhookResponse:
    """
    Ingest one WATI webhook event.

    The raw event is ledgered before processing and annotated with the
    outcome afterwards. Every classification outcome is acknowledged with
    200, including unhandled event types, malformed events and status
    updates for unknown messages. Store failures and timeouts return 500
    and leave the ledger entry unprocessed.
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    try:
        event = json.loads(raw_body)
    except ValueError as e:
        logger.error(f"Invalid JSON: {e}")
        log_webhook_data(request=request, result="invalid_json")
        return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Invalid JSON: {e}")

    deadline = Deadline()
    ledger_id, outcome = await run_bounded(
        ingest_event,
        event,
        deadline,
        session_factory,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        deadline=deadline,
    )

    log_webhook_data(
        request=request,
        event_id=ledger_id,
        event_type=outcome.event_type,
        event_kind=outcome.kind.value,
        result=outcome.status,
    )
    return WebhookResponse(success=True, event_id=ledger_id)


# =============================================================================
# Messages Routes
# =============================================================================

@app.get("/api/messages", responses={400: {"model": ErrorResponse}})
async def list_messages_without_counterparty() -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, "counterpartyId is required")


@app.get(
    "/api/messages/{counterparty_id}",
    response_model=list[MessageView],
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def list_messages(
    counterparty_id: str,
    limit: Annotated[Optional[int], Query(ge=1, le=500, description="Maximum number of messages")] = None,
    order: Annotated[Literal["asc", "desc"], Query(description="Which end of the thread to keep")] = "desc",
    messages: MessageStore = Depends(get_message_store),
):
    """
    Conversation thread with one counterparty, ascending by timestamp.

    With the default order=desc the latest `limit` messages are kept.
    """
    counterparty_id = counterparty_id.strip()
    if not counterparty_id:
        return error_response(status.HTTP_400_BAD_REQUEST, "counterpartyId is required")

    records = await run_bounded(
        messages.query_by_counterparty,
        counterparty_id,
        order,
        limit or settings.MESSAGES_QUERY_LIMIT,
        timeout=settings.STORE_TIMEOUT_SECONDS,
    )
    logger.info(f"GET /api/messages: returned {len(records)} messages for {counterparty_id}")
    return [MessageView.from_record(record) for record in records]


@app.post(
    "/api/messages/{counterparty_id}",
    response_model=OutboundMessageResponse,
    responses={500: {"model": ErrorResponse}},
)
async def send_session_message(
    counterparty_id: str,
    body: SessionMessageRequest,
    messenger: OutboundMessenger = Depends(get_messenger),
) -> OutboundMessageResponse:
    """Send a session message and record it as an outgoing message."""
    message = await messenger.send_session_message(counterparty_id, body.text)
    return OutboundMessageResponse(status="sent", message=MessageView.from_record(message))


@app.post(
    "/api/messages/{counterparty_id}/initiate",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=OutboundMessageResponse,
    responses={500: {"model": ErrorResponse}},
)
async def initiate_chat(
    counterparty_id: str,
    messenger: OutboundMessenger = Depends(get_messenger),
) -> OutboundMessageResponse:
    """Start a conversation by sending the configured template."""
    message = await messenger.initiate_chat(counterparty_id, settings.WATI_TEMPLATE_NAME)
    return OutboundMessageResponse(status="initiating_chat", message=MessageView.from_record(message))


# =============================================================================
# Webhook Ledger Route
# =============================================================================

@app.get("/api/webhook-events/unprocessed", response_model=list[WebhookEventView])
async def list_unprocessed_events(
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    db: Session = Depends(get_db),
):
    """Ledger entries whose processing never completed, oldest first."""
    entries = await run_bounded(
        WebhookLedger(db).unprocessed, limit, timeout=settings.STORE_TIMEOUT_SECONDS
    )
    return [WebhookEventView.model_validate(entry) for entry in entries]


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
