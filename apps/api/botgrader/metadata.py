"""
Bot profile page fetch + parse. The public page at <profile_base_url>/<bot_id> is parsed with BeautifulSoup
into a flat BotMetadata record. Fails soft: fetch() returns None on any network or parse error.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from botgrader.schemas import BotMetadata

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)

# Matched against raw HTML so badge class names count too
_VERIFIED_RE = re.compile(r"verified|official|✓", re.IGNORECASE)
_FOLLOWERS_RE = re.compile(r"(\d+(?:,\d+)*)\s*followers?", re.IGNORECASE)
_TITLE_SUFFIX = " - Poe"


@dataclass
class PageFetch:
    url: str
    status_code: Optional[int] = None
    html: str = ""
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status_code == 200 and self.error is None


def _meta_content(soup: BeautifulSoup, attrs: dict) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    content = tag.get("content") if tag else None
    return content.strip() if content else None


def parse_bot_page(html: str, bot_id: str) -> BotMetadata:
    """Extract title, description, og:image, verification marker and follower count."""
    html = html or ""
    soup = BeautifulSoup(html, "html.parser")
    display_name = bot_id
    if soup.title and soup.title.string:
        display_name = soup.title.string.replace(_TITLE_SUFFIX, "").strip() or bot_id
    followers = None
    m = _FOLLOWERS_RE.search(soup.get_text(" "))
    if m:
        followers = int(m.group(1).replace(",", ""))
    return BotMetadata(
        name=bot_id,
        display_name=display_name,
        description=_meta_content(soup, {"name": "description"}) or "",
        profile_picture_url=_meta_content(soup, {"property": "og:image"}),
        is_verified=bool(_VERIFIED_RE.search(html)),
        follower_count=followers,
    )


class MetadataFetcher:
    def __init__(
        self,
        base_url: str = "https://poe.com",
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def page_url(self, bot_id: str) -> str:
        return f"{self.base_url}/{quote(bot_id.strip())}"

    async def fetch_page(self, bot_id: str) -> PageFetch:
        """GET the profile page. Never raises; errors land in PageFetch.error."""
        url = self.page_url(bot_id)
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            ) as client:
                r = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Profile page fetch failed for %s: %s", bot_id, e)
            return PageFetch(
                url=url,
                error=str(e) or e.__class__.__name__,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        page = PageFetch(
            url=url,
            status_code=r.status_code,
            html=r.text if r.status_code == 200 else "",
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        if r.status_code != 200:
            logger.info("Profile page for %s returned HTTP %s", bot_id, r.status_code)
        return page

    async def fetch(self, bot_id: str) -> Optional[BotMetadata]:
        page = await self.fetch_page(bot_id)
        if not page.ok:
            return None
        try:
            return parse_bot_page(page.html, bot_id)
        except ValueError as e:
            logger.warning("Profile page parse failed for %s: %s", bot_id, e)
            return None
