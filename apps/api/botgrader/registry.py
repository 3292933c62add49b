"""
Check registry: the fixed, ordered list of named checks grouped into chunks.
Both the chunked executor and the single-shot analysis run checks through the same registry.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from botgrader import probe_checks, profile_checks
from botgrader.context import CheckContext
from botgrader.schemas import Category, CheckResult

CheckFn = Callable[[CheckContext], Awaitable[CheckResult]]


@dataclass(frozen=True)
class Chunk:
    index: int
    name: str
    category: Category
    checks: Tuple[str, ...]


class CheckRegistry:
    def __init__(self, layout: Sequence[Tuple[str, Category, Sequence[str]]], checks: Dict[str, CheckFn]):
        """layout: (chunk name, category, check names) in run order. Check names must be unique across chunks."""
        self.chunks: List[Chunk] = []
        self._category: Dict[str, Category] = {}
        for i, (chunk_name, category, names) in enumerate(layout):
            for n in names:
                if n in self._category:
                    raise ValueError(f"Check {n!r} registered twice")
                if n not in checks:
                    raise ValueError(f"Check {n!r} in chunk {chunk_name!r} has no implementation")
                self._category[n] = category
            self.chunks.append(Chunk(index=i, name=chunk_name, category=category, checks=tuple(names)))
        self._checks = dict(checks)

    def __len__(self) -> int:
        return len(self.chunks)

    def chunk(self, index: int) -> Optional[Chunk]:
        if 0 <= index < len(self.chunks):
            return self.chunks[index]
        return None

    def category_of(self, check_name: str) -> Category:
        return self._category[check_name]

    def check_names(self) -> List[str]:
        return [n for c in self.chunks for n in c.checks]

    async def run_check(self, name: str, ctx: CheckContext) -> CheckResult:
        return await self._checks[name](ctx)


DEFAULT_LAYOUT: List[Tuple[str, Category, List[str]]] = [
    ("metadata", Category.USABILITY, [profile_checks.FETCH_METADATA, profile_checks.PARSE_METADATA]),
    ("branding", Category.BRANDING, [
        profile_checks.NAME_FORMATTING,
        profile_checks.PROFILE_PICTURE,
        profile_checks.BRAND_CONSISTENCY,
        profile_checks.VERIFICATION,
    ]),
    ("description", Category.USABILITY, [
        profile_checks.DESCRIPTION_CLARITY,
        profile_checks.ADVANCED_DOCS,
        profile_checks.LIMITATION_DOCS,
    ]),
    ("files_basic", Category.FILE_SUPPORT, [probe_checks.file_check_name(t) for t in ("PNG", "JPEG", "PDF")]),
    ("files_advanced", Category.FILE_SUPPORT, [probe_checks.file_check_name(t) for t in ("GIF", "HEIC", "TIFF", "MP4")]),
    ("conversation", Category.FUNCTIONALITY, [probe_checks.CONVERSATION_COHERENCE, probe_checks.RESPONSE_TIME]),
    ("error_handling", Category.ERROR_HANDLING, [probe_checks.ERROR_MESSAGES]),
]


def default_checks() -> Dict[str, CheckFn]:
    checks: Dict[str, CheckFn] = {
        profile_checks.FETCH_METADATA: profile_checks.fetch_metadata,
        profile_checks.PARSE_METADATA: profile_checks.parse_metadata,
        profile_checks.NAME_FORMATTING: profile_checks.name_formatting,
        profile_checks.PROFILE_PICTURE: profile_checks.profile_picture,
        profile_checks.BRAND_CONSISTENCY: profile_checks.brand_consistency,
        profile_checks.VERIFICATION: profile_checks.verification,
        profile_checks.DESCRIPTION_CLARITY: profile_checks.description_clarity,
        profile_checks.ADVANCED_DOCS: profile_checks.advanced_documentation,
        profile_checks.LIMITATION_DOCS: profile_checks.limitation_documentation,
        probe_checks.CONVERSATION_COHERENCE: probe_checks.conversation_coherence,
        probe_checks.RESPONSE_TIME: probe_checks.response_time,
        probe_checks.ERROR_MESSAGES: probe_checks.error_messages,
    }
    for label in ("PNG", "JPEG", "PDF", "GIF"):
        checks[probe_checks.file_check_name(label)] = partial(probe_checks.file_upload, label=label)
    # Formats the upload path rarely accepts; ask about them instead
    for label in ("HEIC", "TIFF", "MP4"):
        checks[probe_checks.file_check_name(label)] = partial(probe_checks.file_type_awareness, label=label)
    return checks


def build_default_registry() -> CheckRegistry:
    return CheckRegistry(DEFAULT_LAYOUT, default_checks())
