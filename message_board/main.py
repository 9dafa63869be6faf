import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status, Query
from fastapi.responses import JSONResponse

from message_board.config import settings
from message_board.errors import (
    AuthorizationError,
    MessageBoardError,
    NotFoundError,
    ValidationError,
)
from message_board.logging_utils import setup_logging, RequestLoggingMiddleware, log_message_data
from message_board.metrics import record_message_operation, get_metrics, get_metrics_content_type
from message_board.schemas import (
    AuthorMessageCountResponse,
    CreateMessageRequest,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    PaginatedMessagesResponse,
    StatsResponse,
    StatusResponse,
    UpdateMessageRequest,
)
from message_board.storage import init_db, check_db_health, load_snapshot, save_snapshot
from message_board.store import MessageStore


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
}

ERROR_RESULTS = {
    ValidationError: "validation_error",
    NotFoundError: "not_found",
    AuthorizationError: "unauthorized",
}

ERROR_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Caller is not the author"},
    404: {"model": ErrorResponse, "description": "Message not found"},
    422: {"model": ErrorResponse, "description": "Validation error"},
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create snapshot tables and restore the last snapshot
    - Shutdown: save a snapshot of the store
    """
    store: MessageStore = app.state.message_store
    if settings.SNAPSHOT_ENABLED:
        init_db()
        load_snapshot(store)
    yield
    if settings.SNAPSHOT_ENABLED:
        save_snapshot(store)


app = FastAPI(
    title="Message Board API",
    description="Message board with replies, likes, pagination and stats",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.message_store = MessageStore()

app.add_middleware(RequestLoggingMiddleware, principal_header=settings.PRINCIPAL_HEADER)


@app.exception_handler(MessageBoardError)
async def message_board_error_handler(request: Request, exc: MessageBoardError) -> JSONResponse:
    """Map store errors to HTTP status codes."""
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        content={"detail": str(exc)},
    )


# =============================================================================
# Dependencies
# =============================================================================

def get_message_store(request: Request) -> MessageStore:
    """FastAPI dependency for the shared MessageStore."""
    return request.app.state.message_store


def get_caller(request: Request) -> str:
    """
    Caller principal, as set by the upstream authentication layer.
    Required on routes that create or change messages.
    """
    principal = request.headers.get(settings.PRINCIPAL_HEADER)
    if not principal or not principal.strip():
        logger.warning(f"Missing {settings.PRINCIPAL_HEADER} header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing caller identity"
        )
    return principal


StoreDep = Annotated[MessageStore, Depends(get_message_store)]
CallerDep = Annotated[str, Depends(get_caller)]


@contextmanager
def track_operation(request: Request, operation: str, message_id: Optional[int] = None):
    """
    Record metrics and request-log fields for a store operation.

    Yields a dict; set "message_id" on it when the id is only known
    after the call (create).
    """
    tracked = {"message_id": message_id}
    try:
        yield tracked
    except MessageBoardError as e:
        result = ERROR_RESULTS.get(type(e), "error")
        logger.info(f"{operation} failed: {e}")
        record_message_operation(operation, result)
        log_message_data(request, operation, result, tracked["message_id"])
        raise
    record_message_operation(operation, "ok")
    log_message_data(request, operation, "ok", tracked["message_id"])


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
    Readiness probe - returns 200 unless snapshots are enabled and the
    snapshot database is unreachable or missing its schema (then 503).
    """
    if settings.SNAPSHOT_ENABLED and not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Message Routes
# =============================================================================

@app.post(
    "/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_message(
    body: CreateMessageRequest,
    request: Request,
    store: StoreDep,
    caller: CallerDep,
) -> MessageResponse:
    """Create a top-level message, or a reply when parent_id is given."""
    with track_operation(request, "create_message") as tracked:
        message = store.create_message(body.content, body.parent_id, caller)
        tracked["message_id"] = message.id
    return MessageResponse.model_validate(message)


@app.get("/messages", response_model=PaginatedMessagesResponse, responses=ERROR_RESPONSES)
async def list_messages(
    request: Request,
    store: StoreDep,
    page: Annotated[int, Query(ge=1, description="1-indexed page number")] = 1,
    limit: Annotated[int, Query(ge=1, description="Messages per page")] = settings.DEFAULT_PAGE_LIMIT,
    sort_by: Annotated[
        Optional[str],
        Query(description="newest (default), oldest or popular")
    ] = None,
) -> PaginatedMessagesResponse:
    """
    List top-level messages, one page at a time.

    Unrecognized sort_by values fall back to newest first. Pages past the
    end return an empty list with correct metadata.
    """
    logger.info(f"GET /messages: page={page}, limit={limit}, sort_by={sort_by}")

    with track_operation(request, "get_messages"):
        result = store.get_messages(page=page, limit=limit, sort_by=sort_by)

    return PaginatedMessagesResponse.model_validate(result)


@app.get("/messages/{message_id}", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def get_message(message_id: int, request: Request, store: StoreDep) -> MessageResponse:
    with track_operation(request, "get_message", message_id):
        message = store.get_message(message_id)
    return MessageResponse.model_validate(message)


@app.put("/messages/{message_id}", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def update_message(
    message_id: int,
    body: UpdateMessageRequest,
    request: Request,
    store: StoreDep,
    caller: CallerDep,
) -> MessageResponse:
    """Replace the content of a message. Only its author may do this."""
    with track_operation(request, "update_message", message_id):
        message = store.update_message(message_id, body.content, caller)
    return MessageResponse.model_validate(message)


@app.delete("/messages/{message_id}", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def delete_message(
    message_id: int,
    request: Request,
    store: StoreDep,
    caller: CallerDep,
) -> StatusResponse:
    """
    Delete a message. Only its author may do this.

    Replies to the deleted message are kept; their parent_id keeps
    pointing at the removed id.
    """
    with track_operation(request, "delete_message", message_id):
        store.delete_message(message_id, caller)
    return StatusResponse(status="ok")


@app.post("/messages/{message_id}/like", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def like_message(message_id: int, request: Request, store: StoreDep) -> StatusResponse:
    """Add one like. Not deduplicated per caller."""
    with track_operation(request, "like_message", message_id):
        store.like_message(message_id)
    return StatusResponse(status="ok")


@app.get(
    "/messages/{message_id}/thread",
    response_model=list[MessageResponse],
    responses=ERROR_RESPONSES,
)
async def get_message_thread(
    message_id: int,
    request: Request,
    store: StoreDep,
) -> list[MessageResponse]:
    """The message followed by its direct replies."""
    with track_operation(request, "get_message_thread", message_id):
        thread = store.get_message_thread(message_id)
    return [MessageResponse.model_validate(m) for m in thread]


# =============================================================================
# Stats Routes
# =============================================================================

@app.get("/stats", response_model=StatsResponse)
async def get_statistics(request: Request, store: StoreDep) -> StatsResponse:
    """
    Aggregate statistics:
        - total_messages: messages currently stored (replies included)
        - total_authors: distinct authors among stored messages
        - messages_today: messages created in the last 24 hours
    """
    with track_operation(request, "get_stats"):
        stats = store.get_stats()

    logger.info(
        f"GET /stats: {stats.total_messages} messages, {stats.total_authors} authors"
    )
    return StatsResponse.model_validate(stats)


@app.get("/authors/{author}/message-count", response_model=AuthorMessageCountResponse)
async def get_author_message_count(author: str, store: StoreDep) -> AuthorMessageCountResponse:
    return AuthorMessageCountResponse(
        author=author,
        count=store.get_author_message_count(author),
    )


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
