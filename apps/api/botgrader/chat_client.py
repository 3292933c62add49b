"""
Chat-completion client for the bot platform's OpenAI-compatible endpoint.
complete() never raises for HTTP status, timeout or connection errors; those come back as ChatReply(ok=False).
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    ok: bool
    content: str = ""
    status_code: Optional[int] = None
    error: Optional[str] = None
    elapsed_ms: int = 0
    timed_out: bool = False


def _status_error_message(e: APIStatusError) -> str:
    body = e.body
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if body.get("message"):
            return str(body["message"])
    return e.message or f"HTTP {e.status_code}"


class ChatClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0, http_client=http_client
        )

    async def complete(self, model: str, messages: List[dict[str, Any]], *, max_tokens: int = 200) -> ChatReply:
        started = time.monotonic()
        try:
            resp = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
            )
        except APIStatusError as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.info("Chat API HTTP %s for %s", e.status_code, model)
            return ChatReply(ok=False, status_code=e.status_code, error=_status_error_message(e), elapsed_ms=elapsed)
        except APIConnectionError as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.warning("Chat API request failed for %s: %s", model, e)
            return ChatReply(
                ok=False,
                error=str(e) or e.__class__.__name__,
                elapsed_ms=elapsed,
                timed_out=isinstance(e, APITimeoutError),
            )
        elapsed = int((time.monotonic() - started) * 1000)
        content = ""
        if resp.choices and resp.choices[0].message:
            content = resp.choices[0].message.content or ""
        if not content:
            return ChatReply(ok=False, status_code=200, error="Empty completion", elapsed_ms=elapsed)
        return ChatReply(ok=True, content=content, status_code=200, elapsed_ms=elapsed)

    async def aclose(self) -> None:
        await self._client.close()
