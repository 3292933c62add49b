"""
botgrader API - FastAPI entrypoint.
Chunked bot analysis streamed over SSE, plus a single-shot analysis endpoint.
"""
import logging
import os
import uuid
from pathlib import Path
from contextlib import asynccontextmanager

# Load .env so BOTGRADER_* / CORS_ORIGINS are set (override=True so .env wins)
from dotenv import load_dotenv

_api_dir = Path(__file__).resolve().parent
_repo_root = _api_dir.parent.parent
load_dotenv(_api_dir / ".env", override=True)
load_dotenv(_repo_root / ".env", override=True)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from botgrader.chat_client import ChatClient, ChatReply
from botgrader.config import load_settings
from botgrader.events import sse_stream
from botgrader.executor import ChunkExecutor
from botgrader.schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    BotPromptRequest,
    BotPromptResponse,
    ChunkRequest,
)
from botgrader.session_store import SessionBusyError, SessionStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _new_session_id(bot_id: str) -> str:
    return f"{bot_id}-{uuid.uuid4().hex[:12]}"


def _prompt_error(bot_id: str, reply: ChatReply) -> tuple[int, str]:
    """HTTP status + readable message for a failed /test-bot reply."""
    if reply.timed_out:
        return 408, "Request timeout - bot took too long to respond"
    if reply.status_code is None:
        return 502, reply.error or "Bot request failed"
    if reply.status_code == 404:
        return 404, f'Bot "{bot_id}" not found. Please check the bot name.'
    if reply.status_code == 403:
        return 403, f'Access denied to bot "{bot_id}". Bot may be private or require authentication.'
    if reply.status_code < 400:
        return 502, "Bot returned an empty response"
    return reply.status_code, reply.error or f"Bot responded with status: {reply.status_code}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: settings, session store, executor
    settings = load_settings()
    sessions = SessionStore(ttl_sec=settings.session_ttl_sec, lease_ttl_sec=settings.lease_ttl_sec)
    app.state.settings = settings
    app.state.sessions = sessions
    app.state.executor = ChunkExecutor(sessions, settings)
    app.state.chat_factory = lambda api_key: ChatClient(
        api_key, base_url=settings.chat_api_base, timeout=settings.prompt_timeout_sec
    )
    logger.info(
        "Analyzer ready: %d chunks, %.1fs chunk budget",
        app.state.executor.total_chunks, settings.chunk_time_budget_sec,
    )
    yield


app = FastAPI(
    title="botgrader API",
    description="Heuristic quality analysis of hosted chat bots",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "botgrader-api"}


@app.post("/analyze", response_model=AnalyzeResponse)
async def analyze(body: AnalyzeRequest, request: Request):
    """Whole analysis in one request (no chunking, no streaming)."""
    executor: ChunkExecutor = request.app.state.executor
    scorecard = await executor.analyze(body.bot_id, body.api_key)
    return AnalyzeResponse(scorecard=scorecard)


@app.post("/analyze/chunked")
async def analyze_chunked(body: ChunkRequest, request: Request):
    """One chunk of a resumable analysis, streamed as Server-Sent Events."""
    executor: ChunkExecutor = request.app.state.executor
    sessions: SessionStore = request.app.state.sessions
    session_id = body.session_id or _new_session_id(body.bot_id)
    try:
        lease = sessions.acquire(session_id)
    except SessionBusyError as e:
        logger.warning("Rejected chunk %s: %s", body.chunk, e)
        return JSONResponse(status_code=409, content={"error": str(e), "session_id": session_id})

    events = executor.process_chunk(body.bot_id, body.api_key, body.chunk, session_id, lease=lease)
    return EventSourceResponse(sse_stream(events))


@app.post("/test-bot", response_model=BotPromptResponse)
async def prompt_bot(body: BotPromptRequest, request: Request):
    """Send one prompt to a bot and return its reply as-is."""
    bot_id = body.bot_id.strip()
    if not bot_id or not body.prompt.strip():
        return JSONResponse(status_code=400, content={"error": "Bot name and prompt are required"})

    chat = request.app.state.chat_factory(body.api_key)
    try:
        reply = await chat.complete(bot_id, [{"role": "user", "content": body.prompt}])
    finally:
        await chat.aclose()
    if not reply.ok:
        status, message = _prompt_error(bot_id, reply)
        logger.info("Prompt to %s failed with %s: %s", bot_id, status, reply.error)
        return JSONResponse(status_code=status, content={"error": message})
    return BotPromptResponse(response=reply.content)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
