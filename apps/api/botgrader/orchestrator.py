"""
Client orchestrator: drives a chunked analysis to completion against the /analyze/chunked endpoint.

Per chunk attempt: REQUESTING -> STREAMING -> CHUNK_DONE | COMPLETE | FAILED.
- Transport failures (connection error, non-2xx, stream broken or closed before a terminal event)
  retry the same chunk with the same session id after 2**retry seconds, up to max_retries times.
- chunk_complete: next chunk after chunk_delay, retry count reset.
- complete: adopt the scorecard and stop.
- error event: application-level failure; stop without retrying.
Chunks are strictly sequential: chunk N+1 is never requested before chunk N's stream has ended.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from botgrader.events import parse_sse_lines
from botgrader.schemas import (
    TERMINAL_EVENTS,
    Category,
    CheckResult,
    EventType,
    ProgressEvent,
    Scorecard,
    empty_categories,
)
from botgrader.scorecard import merge_result

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_CHUNK_DELAY_SEC = 1.0
CHUNK_PATH = "/analyze/chunked"


class RunState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    CHUNK_DONE = "chunk_done"
    COMPLETE = "complete"
    FAILED = "failed"


class TransportError(Exception):
    """The chunk's stream could not be obtained or did not reach a terminal event."""


@dataclass
class LiveProgress:
    """Client-side copy of the run: latest status plus every result seen so far."""
    message: str = "Initializing analysis..."
    progress: int = 0
    current_test: int = 0
    total_tests: int = 0
    current_category: Optional[Category] = None
    results: Dict[Category, List[CheckResult]] = field(default_factory=empty_categories)

    def apply(self, event: ProgressEvent) -> None:
        if event.type == EventType.PROGRESS:
            self.message = event.message or self.message
            self.progress = event.progress if event.progress is not None else self.progress
            self.current_test = event.current_test or self.current_test
            self.total_tests = event.total_tests or self.total_tests
        elif event.type == EventType.TEST_START:
            self.current_category = event.category or self.current_category
            self.message = event.message or self.message
        elif event.type == EventType.TEST_COMPLETE:
            if event.result is not None and event.category is not None:
                merge_result(self.results, event.category, event.result)
            self.message = f"Completed: {event.test_name or 'test'}"
        elif event.type == EventType.CHUNK_COMPLETE:
            self.message = event.message or "Chunk completed, continuing..."
        elif event.type == EventType.COMPLETE:
            self.progress = 100
            self.message = event.message or "Analysis complete!"
        elif event.type == EventType.ERROR:
            self.message = f"Analysis error: {event.message or 'Unknown error'}"


@dataclass
class RunOutcome:
    state: RunState
    scorecard: Optional[Scorecard]
    live: LiveProgress
    session_id: Optional[str]
    error: Optional[str] = None
    attempts: int = 0


class ChunkedAnalysisClient:
    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        chunk_delay: float = DEFAULT_CHUNK_DELAY_SEC,
        request_timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_status: Optional[Callable[[str], None]] = None,
        on_event: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.chunk_delay = chunk_delay
        self._transport = transport
        self._timeout = request_timeout
        self._sleep = sleep
        self._on_status = on_status
        self._on_event = on_event
        self.state = RunState.IDLE

    def _status(self, message: str) -> None:
        logger.info(message)
        if self._on_status is not None:
            self._on_status(message)

    async def run(self, bot_id: str, api_key: str) -> RunOutcome:
        live = LiveProgress()
        session_id: Optional[str] = None
        chunk_index = 0
        retry = 0
        attempts = 0
        self.state = RunState.IDLE

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self._timeout, connect=10.0),
            transport=self._transport,
        ) as client:
            while True:
                attempts += 1
                attempt = _ChunkAttempt(session_id)
                try:
                    await self._run_attempt(client, attempt, live, bot_id, api_key, chunk_index)
                except (httpx.HTTPError, TransportError) as e:
                    session_id = attempt.session_id
                    reason = str(e) or e.__class__.__name__
                    logger.warning("Chunk %s failed (attempt %s): %s", chunk_index, retry + 1, reason)
                    if retry < self.max_retries:
                        delay = 2 ** retry
                        self._status(
                            f"Connection lost, retrying in {delay}s... (attempt {retry + 1}/{self.max_retries})"
                        )
                        await self._sleep(delay)
                        retry += 1
                        continue
                    self.state = RunState.FAILED
                    error = f"Analysis failed after {self.max_retries} retries: {reason}"
                    self._status(error)
                    return RunOutcome(RunState.FAILED, None, live, session_id, error=error, attempts=attempts)

                session_id = attempt.session_id
                terminal = attempt.terminal
                if terminal.type == EventType.COMPLETE:
                    self.state = RunState.COMPLETE
                    return RunOutcome(RunState.COMPLETE, terminal.scorecard, live, session_id, attempts=attempts)
                if terminal.type == EventType.ERROR:
                    self.state = RunState.FAILED
                    error = terminal.message or "Analysis failed"
                    self._status(f"Analysis error: {error}")
                    return RunOutcome(RunState.FAILED, None, live, session_id, error=error, attempts=attempts)

                self.state = RunState.CHUNK_DONE
                if terminal.next_chunk is None:
                    # chunk_complete without a successor: nothing more to request
                    error = "Server ended the chunk without naming the next one"
                    self.state = RunState.FAILED
                    return RunOutcome(RunState.FAILED, None, live, session_id, error=error, attempts=attempts)
                chunk_index = terminal.next_chunk
                retry = 0
                await self._sleep(self.chunk_delay)

    async def _run_attempt(
        self,
        client: httpx.AsyncClient,
        attempt: "_ChunkAttempt",
        live: LiveProgress,
        bot_id: str,
        api_key: str,
        chunk_index: int,
    ) -> None:
        self.state = RunState.REQUESTING
        body = {"bot_id": bot_id, "api_key": api_key, "chunk": chunk_index, "session_id": attempt.session_id}
        async with client.stream("POST", CHUNK_PATH, json=body) as response:
            if response.status_code >= 400:
                await response.aread()
                raise TransportError(f"HTTP error! status: {response.status_code}")
            self.state = RunState.STREAMING
            try:
                async for event in parse_sse_lines(response.aiter_lines()):
                    attempt.observe(event)
                    live.apply(event)
                    if self._on_event is not None:
                        self._on_event(event)
            except httpx.HTTPError:
                # A broken stream after the terminal event has been seen does not void the chunk
                if attempt.terminal is None:
                    raise
                logger.info("Stream for chunk %s broke after its terminal event; ignoring", chunk_index)
        if attempt.terminal is None:
            raise TransportError("Stream ended before the chunk finished")


class _ChunkAttempt:
    """Bookkeeping for one request: learned session id and the first terminal event."""

    def __init__(self, session_id: Optional[str]):
        self.session_id = session_id
        self.terminal: Optional[ProgressEvent] = None

    def observe(self, event: ProgressEvent) -> None:
        if event.session_id and not self.session_id:
            self.session_id = event.session_id
        if event.type in TERMINAL_EVENTS and self.terminal is None:
            self.terminal = event
