"""
Result aggregation shared by server and client: merge-by-name and the final weighted scorecard.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from botgrader.probe_checks import RESPONSE_TIME
from botgrader.schemas import Category, CheckResult, Scorecard, empty_categories


def merge_result(results: Dict[Category, List[CheckResult]], category: Category, result: CheckResult) -> None:
    """Replace an existing result with the same name in place, else append. Re-applying a retried check never duplicates it."""
    bucket = results.setdefault(category, [])
    for i, existing in enumerate(bucket):
        if existing.name == result.name:
            bucket[i] = result
            return
    bucket.append(result)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def overall_score(results: Iterable[CheckResult]) -> int:
    """Mean of all scores; a result without a score counts as 0 but still counts."""
    scores = [r.score or 0 for r in results]
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def _response_time_ms(results: Iterable[CheckResult]) -> Optional[int]:
    for r in results:
        if r.name == RESPONSE_TIME and r.score and r.debug_info is not None:
            return r.debug_info.duration_ms
    return None


def build_scorecard(bot_id: str, results: Dict[Category, List[CheckResult]]) -> Scorecard:
    categories = empty_categories()
    for category, bucket in results.items():
        categories[category] = list(bucket)
    flat = [r for bucket in categories.values() for r in bucket]
    return Scorecard(
        bot_id=bot_id,
        overall_score=overall_score(flat),
        categories=categories,
        response_time_ms=_response_time_ms(flat),
    )
