"""
Per-invocation context handed to every check, plus small helpers for building results.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from botgrader.chat_client import ChatClient
from botgrader.metadata import MetadataFetcher
from botgrader.schemas import BotMetadata, CheckResult, CheckStatus, DebugInfo, SessionState

RESPONSE_PREVIEW_CHARS = 300


@dataclass
class CheckContext:
    bot_id: str
    session: SessionState
    chat: ChatClient
    fetcher: MetadataFetcher
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    started: float = field(default_factory=time.monotonic)
    timestamp: str = ""

    def begin(self) -> None:
        """Reset the per-check clock; called by the executor right before a check runs."""
        self.started = time.monotonic()
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    async def metadata(self) -> Optional[BotMetadata]:
        """Session metadata, fetched on first use and cached for the rest of the session (even when the fetch failed)."""
        if self.session.metadata is None and not self.session.metadata_fetched:
            self.session.metadata = await self.fetcher.fetch(self.bot_id)
            self.session.metadata_fetched = True
        return self.session.metadata

    def result(
        self,
        name: str,
        passed: bool,
        score: int,
        details: str,
        *,
        error: Optional[str] = None,
        request: Optional[str] = None,
        response: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ) -> CheckResult:
        return CheckResult(
            name=name,
            status=CheckStatus.PASSED if passed else CheckStatus.FAILED,
            score=max(0, min(100, score)),
            details=details,
            error=error,
            debug_info=DebugInfo(
                request=request,
                response=preview(response) if response is not None else None,
                timestamp=self.timestamp or None,
                duration_ms=self.elapsed_ms(),
                expected_behavior=expected,
                actual_behavior=actual,
            ),
        )


def preview(text: str, limit: int = RESPONSE_PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def contains_any(text: str, needles) -> bool:
    return any(n in text for n in needles)
