"""Session API Routes - Pairing, status, sending and logout.

Provides REST endpoints under /api:
- POST /api/pair: Start a session and obtain a pairing code
- GET /api/status/{session_id}: Current connection status
- POST /api/send: Send a text message through a connected session
- POST /api/disconnect/{session_id}: Log out and remove a session
- GET /api/sessions: Registered sessions
- GET /api/sessions/{session_id}: One registered session (404 if unknown)

Errors are raised as BotBridgeError subclasses and rendered as
{"error": message} by the application's exception handlers.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from botbridge.api.auth import verify_api_key
from botbridge.api.ratelimit import PAIR_LIMIT, limiter
from botbridge.exceptions import ValidationError
from botbridge.orchestrator.hub import get_hub

# All session routes require authentication
router = APIRouter(
    prefix="/api",
    tags=["sessions"],
    dependencies=[Depends(verify_api_key)],
)


# Request/Response models
class PairRequest(BaseModel):
    """Request a pairing code for a session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(None, alias="sessionId", description="Session identifier")
    phone_number: str | None = Field(
        None,
        alias="phoneNumber",
        description="Phone number in any notation; non-digits are stripped",
    )


class PairResponse(BaseModel):
    """Pairing code for the user to enter on their phone."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    pair_code: str = Field(..., alias="pairCode")
    message: str


class StatusResponse(BaseModel):
    """Connection status of a session."""

    status: str


class SendRequest(BaseModel):
    """Outbound text message."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(None, alias="sessionId", description="Session identifier")
    to: str | None = Field(
        None,
        description="Full address, or a bare phone number for the default domain",
    )
    message: str | None = Field(None, description="Message text")


class SuccessResponse(BaseModel):
    """Generic success acknowledgement."""

    success: bool = True


class SessionInfo(BaseModel):
    """Registered session summary."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    status: str
    reconnect_attempts: int = Field(..., alias="reconnectAttempts")
    created_at: float = Field(..., alias="createdAt")
    connected_at: float | None = Field(None, alias="connectedAt")


class SessionListResponse(BaseModel):
    """All registered sessions."""

    sessions: list[SessionInfo]
    count: int


# Endpoints
@router.post("/pair", response_model=PairResponse, response_model_by_alias=True)
@limiter.limit(PAIR_LIMIT)
async def pair(request: Request, body: PairRequest) -> PairResponse:
    """Start (or restart) a session and return its pairing code.

    Any existing session with the same id is superseded.
    """
    if not body.session_id or not body.phone_number:
        raise ValidationError("sessionId and phoneNumber required")

    result = await get_hub().pair(body.session_id, body.phone_number)
    return PairResponse(pairCode=result.pair_code, message=result.instructions)


@router.get("/status/{session_id}", response_model=StatusResponse)
async def get_status(session_id: str) -> StatusResponse:
    """Current status; "not_found" for unknown ids."""
    return StatusResponse(status=get_hub().status(session_id).value)


@router.post("/send", response_model=SuccessResponse)
async def send(body: SendRequest) -> SuccessResponse:
    """Send a text message through a connected session."""
    await get_hub().send_message(body.session_id or "", body.to or "", body.message or "")
    return SuccessResponse()


@router.post("/disconnect/{session_id}", response_model=SuccessResponse)
async def disconnect(session_id: str) -> SuccessResponse:
    """Log out and remove a session. Succeeds for unknown ids too."""
    await get_hub().disconnect(session_id)
    return SuccessResponse()


@router.get("/sessions", response_model=SessionListResponse, response_model_by_alias=True)
async def list_sessions() -> SessionListResponse:
    """Registered sessions and their status."""
    sessions = [SessionInfo(**info) for info in get_hub().list_sessions()]
    return SessionListResponse(sessions=sessions, count=len(sessions))


@router.get("/sessions/{session_id}", response_model=SessionInfo, response_model_by_alias=True)
async def get_session(session_id: str) -> SessionInfo:
    """One registered session. 404 for unknown ids."""
    return SessionInfo(**get_hub().session_info(session_id))
