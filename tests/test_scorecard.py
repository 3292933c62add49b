from botgrader.probe_checks import RESPONSE_TIME
from botgrader.schemas import Category, CheckResult, CheckStatus, DebugInfo, empty_categories
from botgrader.scorecard import build_scorecard, merge_result, overall_score, round_half_up


def _r(name, score=None, status=CheckStatus.PASSED, **kw):
    return CheckResult(name=name, status=status, score=score, **kw)


def test_merge_replaces_in_place_by_name():
    results = empty_categories()
    merge_result(results, Category.BRANDING, _r("a", 10))
    merge_result(results, Category.BRANDING, _r("b", 20))
    merge_result(results, Category.BRANDING, _r("a", 90))
    assert [(r.name, r.score) for r in results[Category.BRANDING]] == [("a", 90), ("b", 20)]


def test_round_half_up():
    assert round_half_up(50.5) == 51
    assert round_half_up(2.5) == 3
    assert round_half_up(49.49) == 49


def test_overall_score_of_nothing_is_zero():
    assert overall_score([]) == 0


def test_overall_score_counts_unscored_results():
    assert overall_score([_r("a", 100), _r("b")]) == 50


def test_scorecard_lists_every_category_and_response_time():
    results = {
        Category.FUNCTIONALITY: [
            _r(RESPONSE_TIME, 100, debug_info=DebugInfo(duration_ms=1234)),
        ],
    }
    card = build_scorecard("Assistant", results)
    assert set(card.categories) == set(Category)
    assert card.categories[Category.BRANDING] == []
    assert card.response_time_ms == 1234
    assert card.overall_score == 100


def test_failed_response_time_check_leaves_response_time_empty():
    results = {Category.FUNCTIONALITY: [_r(RESPONSE_TIME, 0, status=CheckStatus.FAILED)]}
    assert build_scorecard("Assistant", results).response_time_ms is None
