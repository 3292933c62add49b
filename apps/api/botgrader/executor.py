"""
Chunk executor: runs one chunk of the check registry against a wall-clock budget and yields
ProgressEvents as each check starts and finishes. State between chunk invocations lives in the
SessionStore under the session id; the final chunk emits the scorecard and deletes the session.

Budget hand-off: when the budget runs out, unstarted checks are parked in SessionState.deferred and
run first by the next invocation (chunk_index + 1). A name leaves deferred only once its result is stored.
Running out in the last configured chunk points the caller past the registry (chunk_index >= len(registry));
such invocations only drain deferred checks.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

from botgrader.chat_client import ChatClient
from botgrader.config import AnalyzerSettings
from botgrader.context import CheckContext
from botgrader.metadata import MetadataFetcher
from botgrader.registry import CheckRegistry, build_default_registry
from botgrader.schemas import (
    CheckResult,
    CheckStatus,
    EventType,
    ProgressEvent,
    Scorecard,
    SessionState,
)
from botgrader.scorecard import build_scorecard, merge_result
from botgrader.session_store import SessionStore

logger = logging.getLogger(__name__)

ChatFactory = Callable[[str], ChatClient]


class ChunkSetupError(ValueError):
    """The chunk request itself is invalid (unknown chunk, session/bot mismatch)."""


class ChunkExecutor:
    def __init__(
        self,
        sessions: SessionStore,
        settings: Optional[AnalyzerSettings] = None,
        registry: Optional[CheckRegistry] = None,
        fetcher: Optional[MetadataFetcher] = None,
        chat_factory: Optional[ChatFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sessions = sessions
        self.settings = settings or AnalyzerSettings()
        self.registry = registry or build_default_registry()
        self.fetcher = fetcher or MetadataFetcher(
            self.settings.profile_base_url, timeout=self.settings.metadata_timeout_sec
        )
        self._chat_factory = chat_factory or self._default_chat
        self._clock = clock
        self._sleep = sleep

    def _default_chat(self, api_key: str) -> ChatClient:
        return ChatClient(api_key, base_url=self.settings.chat_api_base, timeout=self.settings.chat_timeout_sec)

    @property
    def total_chunks(self) -> int:
        return len(self.registry)

    async def process_chunk(
        self,
        bot_id: str,
        api_key: str,
        chunk_index: int,
        session_id: str,
        lease: Optional[str] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Yield the events for one chunk invocation. If lease is given the caller already holds the
        session's write lease; it is released when the generator finishes either way.
        """
        try:
            if lease is None:
                lease = self.sessions.acquire(session_id)
            async for event in self._run_chunk(bot_id, api_key, chunk_index, session_id):
                yield event
        except Exception as e:
            # Check failures are handled per check; anything reaching here is a setup/session failure
            logger.exception("Chunk %s for session %s failed", chunk_index, session_id)
            yield ProgressEvent(type=EventType.ERROR, message=str(e) or "Analysis failed", session_id=session_id)
        finally:
            if lease is not None:
                self.sessions.release(session_id, lease)

    async def _run_chunk(self, bot_id: str, api_key: str, chunk_index: int, session_id: str) -> AsyncIterator[ProgressEvent]:
        entered = self._clock()
        total = self.total_chunks
        state = self.sessions.get(session_id)
        # Past the configured chunks only deferred checks are left to drain
        if chunk_index < 0 or (chunk_index >= total and (state is None or not state.deferred)):
            raise ChunkSetupError(f"Unknown chunk index {chunk_index} (analysis has {total} chunks)")
        if state is None:
            state = SessionState(bot_id=bot_id)
            self.sessions.put(session_id, state)
            logger.info("Session %s created for bot %s", session_id, bot_id)
        elif state.bot_id != bot_id:
            raise ChunkSetupError(f"Session {session_id} belongs to a different bot")

        chunk = self.registry.chunk(chunk_index)
        label = chunk.name if chunk else "remaining"
        yield ProgressEvent(
            type=EventType.PROGRESS,
            message=f"Processing {label} tests...",
            progress=min(100, round(chunk_index / total * 100)) if total else 100,
            current_test=min(chunk_index + 1, total),
            total_tests=total,
            session_id=session_id,
        )

        own = list(chunk.checks) if chunk else []
        # A retried chunk may find its own tail in deferred; those run in their normal place
        work = [n for n in dict.fromkeys(state.deferred) if n not in own] + own
        chat = self._chat_factory(api_key)
        ctx = CheckContext(bot_id=bot_id, session=state, chat=chat, fetcher=self.fetcher, sleep=self._sleep)
        try:
            for position, name in enumerate(work):
                # Always run at least one check per invocation so the run makes progress
                if position > 0 and self._clock() - entered > self.settings.chunk_time_budget_sec:
                    state.deferred = work[position:]
                    self.sessions.put(session_id, state)
                    logger.info(
                        "Chunk %s of session %s hit its %.1fs budget; deferring %d check(s)",
                        chunk_index, session_id, self.settings.chunk_time_budget_sec, len(state.deferred),
                    )
                    yield ProgressEvent(
                        type=EventType.CHUNK_COMPLETE,
                        message="Chunk time budget reached - continuing with next chunk",
                        next_chunk=chunk_index + 1,
                        session_id=session_id,
                    )
                    return

                category = self.registry.category_of(name)
                yield ProgressEvent(
                    type=EventType.TEST_START,
                    category=category,
                    test_name=name,
                    message=f"Testing: {name}",
                    session_id=session_id,
                )
                result = await self._run_one(name, ctx)
                merge_result(state.results, category, result)
                # Handed-off names leave deferred only once their result is stored
                if name in state.deferred:
                    state.deferred = [n for n in state.deferred if n != name]
                self.sessions.put(session_id, state)
                yield ProgressEvent(
                    type=EventType.TEST_COMPLETE,
                    category=category,
                    test_name=name,
                    result=result,
                    session_id=session_id,
                )
                await self._sleep(self.settings.inter_check_delay_sec)
        finally:
            await chat.aclose()

        if chunk_index >= total - 1:
            scorecard = build_scorecard(bot_id, state.results)
            # The consumer may stop reading at `complete`
            self.sessions.delete(session_id)
            logger.info("Session %s complete (score %s); deleted", session_id, scorecard.overall_score)
            yield ProgressEvent(
                type=EventType.COMPLETE,
                scorecard=scorecard,
                progress=100,
                message="Analysis complete!",
                session_id=session_id,
            )
        else:
            yield ProgressEvent(
                type=EventType.CHUNK_COMPLETE,
                message=f"{label} complete",
                next_chunk=chunk_index + 1,
                session_id=session_id,
            )

    async def _run_one(self, name: str, ctx: CheckContext) -> CheckResult:
        ctx.begin()
        try:
            return await self.registry.run_check(name, ctx)
        except Exception as e:
            logger.warning("Check %r raised: %s", name, e)
            cause = str(e) or e.__class__.__name__
            return CheckResult(name=name, status=CheckStatus.FAILED, score=0, details=f"Error: {cause}", error=cause)

    async def analyze(self, bot_id: str, api_key: str) -> Scorecard:
        """Single-shot run of the whole registry: no budget, no session store."""
        state = SessionState(bot_id=bot_id)
        chat = self._chat_factory(api_key)
        ctx = CheckContext(bot_id=bot_id, session=state, chat=chat, fetcher=self.fetcher, sleep=self._sleep)
        try:
            for name in self.registry.check_names():
                result = await self._run_one(name, ctx)
                merge_result(state.results, self.registry.category_of(name), result)
                await self._sleep(self.settings.inter_check_delay_sec)
        finally:
            await chat.aclose()
        return build_scorecard(bot_id, state.results)
