"""
Data Models for agentdeck.

Pydantic models shared by the run engine, the session manager and the HTTP
surface:
- Run execution (RunRequest, RunResult, TokenUsage, RunError, ErrorKind)
- Interactive sessions (SessionRecord, SessionStatus, SessionEventType)
- API request/response schemas
"""

from datetime import datetime
from enum import Enum
from typing import Callable, List, Literal, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Closed failure taxonomy for one-shot runs."""
    TIMEOUT = "timeout"                        # Wall-clock limit reached, process terminated
    SESSION_NOT_FOUND = "session_not_found"    # Resumed session unknown to the backend
    PERMISSION_DENIED = "permission_denied"    # Auth or permission refusal
    API_ERROR = "api_error"                    # Rate limit / overload upstream
    SPAWN_ERROR = "spawn_error"                # Binary missing or unknown provider
    KILLED = "killed"                          # Terminated by SIGKILL/SIGTERM
    UNKNOWN = "unknown"


ParseFailure = Literal["empty_output", "malformed_output"]


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    # None means the backend never reported the counter
    cache_creation_tokens: Optional[int] = None
    cache_read_tokens: Optional[int] = None


class RunError(BaseModel):
    kind: ErrorKind
    message: str
    exit_code: Optional[int] = None
    parse_failure: Optional[ParseFailure] = None


class RunRequest(BaseModel):
    """One-shot invocation of a CLI backend."""
    prompt: str = ""
    provider: Optional[str] = None
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    workdir: Optional[str] = None
    timeout_sec: Optional[float] = None
    session_id: Optional[str] = None
    resume: bool = False
    skip_permissions: bool = False
    allowed_tools: List[str] = Field(default_factory=list)
    queue_key: Optional[str] = None
    assignment_id: Optional[str] = None
    on_stream: Optional[Callable[[str], None]] = Field(default=None, exclude=True)


class RunResult(BaseModel):
    """Normalized outcome of a run. Returned for every outcome, never raised."""
    success: bool
    text: str = ""
    session_id: str = ""
    model: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    duration_ms: int = 0
    num_turns: int = 0
    error: Optional[RunError] = None


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class SessionEventType(str, Enum):
    SCREEN_DELTA = "session.screen_delta"
    ERROR = "session.error"
    CLOSED = "session.closed"
    RUN_STARTED = "run.started"
    RUN_COMPLETED = "run.completed"


class SessionRecord(BaseModel):
    """Persisted state of an interactive tmux-backed session."""
    id: str
    name: str
    owner: str
    tmux_session: str
    tmux_window: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    workdir: str
    provider: str
    created_at: datetime
    last_activity_at: datetime
    workspace_context_id: Optional[str] = None
    project_context_id: Optional[str] = None
    task_context_id: Optional[str] = None

    @property
    def tmux_target(self) -> str:
        if self.tmux_window:
            return f"{self.tmux_session}:{self.tmux_window}"
        return self.tmux_session


class SessionContextLink(BaseModel):
    workspace_context_id: Optional[str] = None
    project_context_id: Optional[str] = None
    task_context_id: Optional[str] = None


class InteractiveTaskResult(BaseModel):
    success: bool
    text: str
    duration_ms: int
    timed_out: bool = False


class DiscoveredSession(BaseModel):
    tmux_session: str
    workdir: str
    registered: bool


# ---------------------------------------------------------------------------
# API schemas
# ---------------------------------------------------------------------------

class RunSubmitRequest(BaseModel):
    prompt: str = ""
    provider: Optional[str] = None
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    workdir: Optional[str] = None
    timeout_sec: Optional[float] = Field(default=None, gt=0)
    session_id: Optional[str] = None
    resume: bool = False
    skip_permissions: bool = False
    allowed_tools: List[str] = Field(default_factory=list)
    queue_key: Optional[str] = None
    assignment_id: Optional[str] = None

    def to_run_request(self) -> RunRequest:
        return RunRequest(**self.model_dump())


class ConcurrencyUpdateRequest(BaseModel):
    max_concurrent: int = Field(ge=1)


class ConcurrencyStateResponse(BaseModel):
    running: int
    queued: int
    max_concurrent: int


class SessionCreateRequest(BaseModel):
    owner: str
    workdir: Optional[str] = None
    name: str = "main"
    provider: Optional[str] = None


class SessionConnectRequest(BaseModel):
    owner: str
    target: str


class SessionInputRequest(BaseModel):
    text: str


class SessionInputResponse(BaseModel):
    session_id: str
    delivered: bool


class SessionTaskRequest(BaseModel):
    prompt: str
    timeout_sec: Optional[float] = Field(default=None, gt=0)


class SessionListResponse(BaseModel):
    sessions: List[SessionRecord]


class SessionOutputResponse(BaseModel):
    session_id: str
    chunks: List[str]


class SessionCloseResponse(BaseModel):
    session_id: str
    closed: bool
