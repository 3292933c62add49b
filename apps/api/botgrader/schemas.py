from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from enum import Enum


class Category(str, Enum):
    BRANDING = "branding"
    FUNCTIONALITY = "functionality"
    USABILITY = "usability"
    FILE_SUPPORT = "file_support"
    ERROR_HANDLING = "error_handling"


class CheckStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


def empty_categories() -> Dict[Category, List["CheckResult"]]:
    return {c: [] for c in Category}


# --- Check results ---
class DebugInfo(BaseModel):
    """What was sent, what came back and how long it took."""
    request: Optional[str] = None
    response: Optional[str] = None
    timestamp: Optional[str] = Field(default=None, description="ISO-8601 UTC start time of the check")
    duration_ms: Optional[int] = None
    expected_behavior: Optional[str] = None
    actual_behavior: Optional[str] = None


class CheckResult(BaseModel):
    name: str
    status: CheckStatus
    score: Optional[int] = Field(default=None, ge=0, le=100)
    details: Optional[str] = None
    error: Optional[str] = None
    debug_info: Optional[DebugInfo] = None


class BotMetadata(BaseModel):
    """Flat attribute record scraped from a bot's public profile page."""
    name: str
    display_name: str
    description: str = ""
    profile_picture_url: Optional[str] = None
    is_verified: bool = False
    follower_count: Optional[int] = None


class Scorecard(BaseModel):
    bot_id: str
    overall_score: int = Field(ge=0, le=100)
    categories: Dict[Category, List[CheckResult]] = Field(default_factory=empty_categories)
    response_time_ms: Optional[int] = None


# --- Session state (server side, addressed by session id) ---
class SessionState(BaseModel):
    bot_id: str
    metadata: Optional[BotMetadata] = None
    metadata_fetched: bool = False  # set after the first fetch attempt, successful or not
    results: Dict[Category, List[CheckResult]] = Field(default_factory=empty_categories)
    deferred: List[str] = Field(default_factory=list, description="Check names handed over by a chunk that ran out of time")


# --- Progress event stream ---
class EventType(str, Enum):
    PROGRESS = "progress"
    TEST_START = "test_start"
    TEST_COMPLETE = "test_complete"
    CHUNK_COMPLETE = "chunk_complete"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.CHUNK_COMPLETE, EventType.COMPLETE, EventType.ERROR})


class ProgressEvent(BaseModel):
    type: EventType
    category: Optional[Category] = None
    test_name: Optional[str] = None
    message: Optional[str] = None
    result: Optional[CheckResult] = None
    scorecard: Optional[Scorecard] = None
    progress: Optional[int] = None
    current_test: Optional[int] = None
    total_tests: Optional[int] = None
    next_chunk: Optional[int] = None
    session_id: Optional[str] = None


# --- API requests / responses ---
class AnalyzeRequest(BaseModel):
    bot_id: str = Field(min_length=1)
    api_key: str = Field(min_length=1)


class ChunkRequest(AnalyzeRequest):
    chunk: int = Field(default=0, ge=0)
    session_id: Optional[str] = None


class AnalyzeResponse(BaseModel):
    scorecard: Scorecard


class BotPromptRequest(BaseModel):
    """One free-form prompt sent straight to a bot. Blank bot_id/prompt is answered with 400, not 422."""
    bot_id: str = ""
    prompt: str = ""
    api_key: str = Field(min_length=1)


class BotPromptResponse(BaseModel):
    response: str
    status: str = "success"
