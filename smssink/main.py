import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated, Any, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from smssink.config import settings
from smssink.errors import (
    InternalFailure,
    MalformedInput,
    MethodNotAllowed,
    ProviderError,
    Unauthorized,
    provider_error_handler,
)
from smssink.logging_utils import RequestLoggingMiddleware, log_message_data, setup_logging
from smssink.metrics import get_metrics, get_metrics_content_type, record_message_outcome
from smssink.schemas import (
    CredentialResponse,
    CredentialUpdate,
    ErrorResponse,
    FlatInboundRequest,
    HealthResponse,
    InboundEnvelope,
    InboundResponse,
    LogEntryResponse,
    MessageEnvelope,
    MessageRecordResponse,
    MessageRequest,
    OutboundMessage,
    PhoneNumber,
    Recipient,
    SettingsResponse,
    SettingsUpdate,
    SimulatedInboundResponse,
    StatusResponse,
)
from smssink.storage import (
    DEFAULT_LOG_LIMIT,
    MAX_LOG_LIMIT,
    check_db_health,
    clear_logs,
    clear_messages,
    decode_details,
    decode_media_urls,
    get_credential,
    get_db,
    get_logs,
    init_db,
    insert_message,
    is_debug_mode,
    list_messages,
    record_log,
    set_credential,
    set_setting,
)
from smssink.utils import format_timestamp, utc_now
from smssink.validator import validate_message_request
from smssink.webhooks import CallbackDispatcher, MessageDetails, dispatcher, get_dispatcher


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database, seed credential, prune old logs
    - Shutdown: Drop in-flight status callbacks (they are never resumed)
    """
    init_db()
    record_log("info", "system", "SmsSink mock server started")
    yield
    dispatcher.abandon()


app = FastAPI(
    title="SmsSink",
    description="Local mock of a messaging provider API for integration testing",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_exception_handler(ProviderError, provider_error_handler)


@app.exception_handler(StarletteHTTPException)
async def method_not_allowed_handler(request: Request, exc: StarletteHTTPException):
    """Render 405s in the provider error format; everything else uses FastAPI's default."""
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        error = MethodNotAllowed(f"[SmsSink] Method {request.method} is not supported for this endpoint.")
        return await provider_error_handler(request, error)
    return await http_exception_handler(request, exc)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return await provider_error_handler(request, InternalFailure("[SmsSink] Database error."))


# =============================================================================
# Helpers
# =============================================================================

def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def parse_json_body(raw_body: bytes) -> Any:
    """Decode a JSON body or raise MalformedInput (400)."""
    try:
        return json.loads(raw_body)
    except ValueError as e:
        raise MalformedInput(f"[SmsSink] Invalid JSON payload: {e}")


def validation_summary(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "body"
    return f"{location}: {first['msg']}"


def parse_message_request(raw_body: bytes) -> MessageRequest:
    """
    Parse the body of POST /v2/messages.

    Bodies that are not JSON objects, or whose fields have the wrong JSON
    types, are malformed (400) rather than invalid (422).
    """
    body = parse_json_body(raw_body)
    try:
        return MessageRequest.model_validate(body)
    except ValidationError as e:
        raise MalformedInput(f"[SmsSink] Invalid JSON payload: {validation_summary(e)}")


def parse_envelope(body: Any) -> Optional[InboundEnvelope]:
    """Return the event envelope if the body has that shape, else None."""
    try:
        return InboundEnvelope.model_validate(body)
    except ValidationError:
        return None


def to_record_response(message) -> MessageRecordResponse:
    return MessageRecordResponse(
        id=message.id,
        created_at=message.created_at,
        sender=message.sender,
        recipient=message.recipient,
        content=message.content,
        media_urls=decode_media_urls(message.media_urls),
        messaging_profile_id=message.messaging_profile_id,
        direction=message.direction,
    )


def parse_limit(raw: Optional[str]) -> int:
    """Parse the logs limit: default 100, values below 1 become 100, capped at 1000."""
    if raw is None:
        return DEFAULT_LOG_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        return DEFAULT_LOG_LIMIT
    if limit < 1:
        return DEFAULT_LOG_LIMIT
    return min(limit, MAX_LOG_LIMIT)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    schema is applied, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Provider API: Send Message
# =============================================================================

@app.post(
    "/v2/messages",
    response_model=MessageEnvelope,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed body"},
        401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
        422: {"model": ErrorResponse, "description": "Missing required parameter"},
        500: {"model": ErrorResponse, "description": "Failed to save message"},
    }
)
async def create_message(
    request: Request,
    background_tasks: BackgroundTasks,
    authorization: Annotated[str | None, Header()] = None,
    db: Session = Depends(get_db),
    callbacks: CallbackDispatcher = Depends(get_dispatcher),
) -> MessageEnvelope:
    """
    Accept an outbound message.

    - Parses and validates the body (400 malformed, 401 auth, 422 missing field)
    - Stores the message with direction "outbound"
    - Responds with status "queued"
    - If webhook_url is given, schedules message.sent / message.delivered
      callbacks after the response has been sent

    Headers:
        - Authorization: "Bearer <key>", "Basic <key>" or the raw key
    """
    raw_body = await request.body()

    if is_debug_mode(db):
        record_log("info", "message", "Raw request body received", {
            "body": raw_body.decode("utf-8", errors="replace"),
            "ip": client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }, db=db)

    try:
        message_request = parse_message_request(raw_body)
    except MalformedInput as e:
        logger.error(f"Invalid outbound message payload: {e.detail}")
        record_log("error", "message", "Invalid JSON payload in outbound message request",
                   {"error": e.detail, "ip": client_ip(request)}, db=db)
        record_message_outcome("outbound", "invalid_json")
        log_message_data(request, result="invalid_json")
        raise

    credential = get_credential(db)

    try:
        message = validate_message_request(authorization, message_request, credential.api_key)
    except ProviderError as e:
        unauthorized = isinstance(e, Unauthorized)
        result = "unauthorized" if unauthorized else "validation_error"
        logger.warning(f"Outbound message rejected ({e.status_code}): {e.detail}")
        record_log("error", "auth" if unauthorized else "message", "Validation failed for outbound message", {
            "status_code": e.status_code,
            "detail": e.detail,
            "from": message_request.from_number,
            "to": message_request.recipient(),
            "ip": client_ip(request),
        }, db=db)
        record_message_outcome("outbound", result)
        log_message_data(request, result=result)
        raise

    message_id = str(uuid.uuid4())
    message_type = message.message_type

    if not insert_message(
        db=db,
        message_id=message_id,
        sender=message.sender,
        recipient=message.recipient,
        content=message.text,
        media_urls=message.media_urls,
        messaging_profile_id=message.messaging_profile_id,
        direction="outbound",
    ):
        record_log("error", "message", "Failed to save outbound message to database",
                   {"message_id": message_id, "from": message.sender, "to": message.recipient}, db=db)
        record_message_outcome("outbound", "error")
        log_message_data(request, message_id=message_id, result="error")
        raise InternalFailure("[SmsSink] Failed to save message.")

    record_log("info", "message", "Outbound message sent successfully", {
        "message_id": message_id,
        "from": message.sender,
        "to": message.recipient,
        "type": message_type,
        "has_text": bool(message.text),
        "media_count": len(message.media_urls),
    }, db=db)
    record_message_outcome("outbound", "created")
    log_message_data(request, message_id=message_id, result="created")

    now = utc_now()
    timestamp = format_timestamp(now)
    data = OutboundMessage(
        id=message_id,
        messaging_profile_id=message.messaging_profile_id,
        from_number=PhoneNumber(phone_number=message.sender),
        to=[Recipient(phone_number=message.recipient, status="queued")],
        text=message.text,
        media=message.media_urls,
        type=message_type,
        valid_until=format_timestamp(now + timedelta(hours=24)),
        webhook_url=message.webhook_url,
        webhook_failover_url=message.webhook_failover_url,
        use_profile_webhooks=message.use_profile_webhooks,
        created_at=timestamp,
        updated_at=timestamp,
    )

    # Runs after the response is sent; schedule() itself only spawns a task
    if message.webhook_url:
        background_tasks.add_task(callbacks.schedule, MessageDetails(
            id=message_id,
            sender=message.sender,
            recipient=message.recipient,
            text=message.text,
            messaging_profile_id=message.messaging_profile_id,
            message_type=message_type,
            media_urls=message.media_urls,
            webhook_url=message.webhook_url,
            webhook_failover_url=message.webhook_failover_url,
        ))

    return MessageEnvelope(data=data)


# =============================================================================
# Provider API: Inbound Webhook
# =============================================================================

@app.post(
    "/v2/webhooks/messages",
    response_model=InboundResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed body or missing from/to"},
        500: {"model": ErrorResponse, "description": "Failed to save message"},
    }
)
async def inbound_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> InboundResponse:
    """
    Receive an inbound message. No authentication.

    Accepted shapes, tried in order:
        - Envelope: {"data": {"event_type": ..., "payload": {"from", "to", ...}}}
        - Flat: {"from", "to", "text", "media_urls", "messaging_profile_id"}
    """
    raw_body = await request.body()

    try:
        body = parse_json_body(raw_body)
    except MalformedInput as e:
        record_log("error", "webhook", "Invalid JSON payload in webhook", {"error": e.detail, "ip": client_ip(request)}, db=db)
        record_message_outcome("inbound", "invalid_json")
        log_message_data(request, result="invalid_json")
        raise

    envelope = parse_envelope(body)
    if envelope is not None and envelope.data.payload.sender():
        payload = envelope.data.payload
        message_id = payload.id or str(uuid.uuid4())
        wire_format = "envelope"
    else:
        try:
            payload = FlatInboundRequest.model_validate(body)
        except ValidationError as e:
            record_log("error", "webhook", "Invalid JSON payload in webhook",
                       {"error": validation_summary(e), "ip": client_ip(request)}, db=db)
            record_message_outcome("inbound", "invalid_json")
            log_message_data(request, result="invalid_json")
            raise MalformedInput(f"[SmsSink] Invalid JSON payload: {validation_summary(e)}")
        message_id = str(uuid.uuid4())
        wire_format = "flat"

    sender = payload.sender()
    recipient = payload.recipient()
    if not sender or not recipient:
        record_log("error", "webhook", "Missing required fields in webhook",
                   {"from": sender, "to": recipient, "ip": client_ip(request)}, db=db)
        record_message_outcome("inbound", "validation_error")
        log_message_data(request, result="validation_error")
        raise MalformedInput("[SmsSink] The 'from' and 'to' parameters are required.")

    media_urls = list(payload.media_urls or [])
    if not insert_message(
        db=db,
        message_id=message_id,
        sender=sender,
        recipient=recipient,
        content=payload.text or "",
        media_urls=media_urls,
        messaging_profile_id=payload.messaging_profile_id or "",
        direction="inbound",
    ):
        record_log("error", "webhook", "Failed to save inbound webhook message",
                   {"message_id": message_id, "from": sender, "to": recipient}, db=db)
        record_message_outcome("inbound", "error")
        log_message_data(request, message_id=message_id, result="error")
        raise InternalFailure("[SmsSink] Failed to save message.")

    details = {"message_id": message_id, "from": sender, "to": recipient, "media_count": len(media_urls)}
    if wire_format == "envelope":
        details["event_type"] = envelope.data.event_type
    record_log("info", "webhook", f"Inbound message received ({wire_format} format)", details, db=db)
    record_message_outcome("inbound", "received")
    log_message_data(request, message_id=message_id, result="received")

    return InboundResponse()


# =============================================================================
# UI API: Messages
# =============================================================================

@app.get("/api/messages", response_model=List[MessageRecordResponse])
async def get_all_messages(db: Session = Depends(get_db)) -> List[MessageRecordResponse]:
    """All stored messages, newest first."""
    return [to_record_response(message) for message in list_messages(db)]


@app.delete("/api/messages", response_model=StatusResponse)
async def delete_all_messages(db: Session = Depends(get_db)) -> StatusResponse:
    if not clear_messages(db):
        raise InternalFailure("[SmsSink] Failed to clear messages.")
    record_log("info", "system", "All messages cleared", db=db)
    return StatusResponse()


@app.post(
    "/api/messages/inbound",
    response_model=SimulatedInboundResponse,
    responses={400: {"model": ErrorResponse, "description": "Malformed body or missing field"}},
)
async def simulate_inbound(request: Request, db: Session = Depends(get_db)) -> SimulatedInboundResponse:
    """Create an inbound message from the UI (stricter than the webhook: text or media required)."""
    body = parse_json_body(await request.body())
    try:
        req = FlatInboundRequest.model_validate(body)
    except ValidationError as e:
        raise MalformedInput(f"[SmsSink] Invalid JSON payload: {validation_summary(e)}")

    sender = req.sender()
    recipient = req.recipient()
    text = req.text or ""
    media_urls = list(req.media_urls or [])

    if not sender or not recipient:
        record_log("error", "message", "Missing required fields in simulate inbound",
                   {"from": sender, "to": recipient}, db=db)
        raise MalformedInput("[SmsSink] The 'from' and 'to' parameters are required.")

    if not text and not media_urls:
        record_log("error", "message", "Missing text or media_urls in simulate inbound",
                   {"from": sender, "to": recipient}, db=db)
        raise MalformedInput("[SmsSink] Either 'text' or 'media_urls' parameter is required.")

    message_id = str(uuid.uuid4())
    if not insert_message(
        db=db,
        message_id=message_id,
        sender=sender,
        recipient=recipient,
        content=text,
        media_urls=media_urls,
        messaging_profile_id=req.messaging_profile_id or "",
        direction="inbound",
    ):
        raise InternalFailure("[SmsSink] Failed to save message.")

    record_log("info", "message", "Simulated inbound message created",
               {"message_id": message_id, "from": sender, "to": recipient, "media_count": len(media_urls)}, db=db)
    record_message_outcome("inbound", "received")

    return SimulatedInboundResponse(
        id=message_id,
        from_number=sender,
        to=recipient,
        text=text,
        media_urls=media_urls,
        created_at=format_timestamp(utc_now()),
    )


# =============================================================================
# UI API: Credentials
# =============================================================================

@app.get("/api/credentials", response_model=CredentialResponse)
async def read_credentials(db: Session = Depends(get_db)) -> CredentialResponse:
    return CredentialResponse.model_validate(get_credential(db))


@app.post(
    "/api/credentials",
    response_model=CredentialResponse,
    responses={400: {"model": ErrorResponse, "description": "Malformed body or empty api_key"}},
)
async def update_credentials(request: Request, db: Session = Depends(get_db)) -> CredentialResponse:
    """Replace the shared API key checked by POST /v2/messages."""
    try:
        update = CredentialUpdate.model_validate(json.loads(await request.body()))
    except (ValueError, ValidationError):
        raise MalformedInput("[SmsSink] Invalid JSON payload.")

    if not update.api_key:
        raise MalformedInput("[SmsSink] The 'api_key' parameter is required.")

    credential = set_credential(db, update.api_key)
    if credential is None:
        raise InternalFailure("[SmsSink] Failed to save credentials.")

    record_log("info", "auth", "API credential updated", db=db)
    return CredentialResponse.model_validate(credential)


# =============================================================================
# UI API: Logs
# =============================================================================

@app.get("/api/logs", response_model=List[LogEntryResponse])
async def read_logs(
    level: Annotated[str | None, Query(description="Filter by level (info, warning, error)")] = None,
    category: Annotated[str | None, Query(description="Filter by category (message, webhook, auth, system)")] = None,
    limit: Annotated[str | None, Query(description="Maximum entries (default 100, max 1000)")] = None,
    db: Session = Depends(get_db),
) -> List[LogEntryResponse]:
    """Application log entries, newest first."""
    entries = get_logs(db, level=level, category=category, limit=parse_limit(limit))
    return [
        LogEntryResponse(
            id=entry.id,
            created_at=entry.created_at,
            level=entry.level,
            category=entry.category,
            message=entry.message,
            details=decode_details(entry.details),
        )
        for entry in entries
    ]


@app.delete("/api/logs", response_model=StatusResponse)
async def delete_logs(db: Session = Depends(get_db)) -> StatusResponse:
    if not clear_logs(db):
        raise InternalFailure("[SmsSink] Failed to clear logs.")
    record_log("info", "system", "All logs cleared", db=db)
    return StatusResponse()


# =============================================================================
# UI API: Settings
# =============================================================================

@app.get("/api/settings", response_model=SettingsResponse)
async def read_settings(db: Session = Depends(get_db)) -> SettingsResponse:
    return SettingsResponse(debug_mode=is_debug_mode(db))


@app.post(
    "/api/settings",
    response_model=SettingsResponse,
    responses={400: {"model": ErrorResponse, "description": "Malformed body"}},
)
async def update_settings(request: Request, db: Session = Depends(get_db)) -> SettingsResponse:
    try:
        update = SettingsUpdate.model_validate(json.loads(await request.body()))
    except (ValueError, ValidationError):
        raise MalformedInput("[SmsSink] Invalid JSON payload.")

    if update.debug_mode is not None:
        if not set_setting(db, "debug_mode", "true" if update.debug_mode else "false"):
            raise InternalFailure("[SmsSink] Failed to save settings.")
        record_log("info", "system", "Debug mode changed", {"debug_mode": update.debug_mode}, db=db)

    return SettingsResponse(debug_mode=is_debug_mode(db))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
