import asyncio
import json

import httpx

from botgrader.events import to_sse
from botgrader.orchestrator import ChunkedAnalysisClient, LiveProgress, RunState
from botgrader.schemas import Category, CheckResult, CheckStatus, EventType, ProgressEvent

from stubs import SleepRecorder, collect, make_executor, single_check_registry


def sse_body(events):
    return b"".join(to_sse(e).encode() for e in events)


def sse_response(events, status_code=200):
    return httpx.Response(status_code, headers={"content-type": "text/event-stream"}, content=sse_body(events))


class StubServer:
    """Serves /analyze/chunked from a real executor; `failures` maps chunk index -> responses to fail with first."""

    def __init__(self, executor, failures=None):
        self.executor = executor
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.requests = []

    async def __call__(self, request):
        body = json.loads(request.content)
        self.requests.append(body)
        pending = self.failures.get(body["chunk"])
        if pending:
            failure = pending.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return failure
        session_id = body["session_id"] or f"{body['bot_id']}-0123456789ab"
        events = []
        async for event in self.executor.process_chunk(body["bot_id"], body["api_key"], body["chunk"], session_id):
            events.append(event)
        return sse_response(events)


def _client(handler, sleep, **kw):
    return ChunkedAnalysisClient("http://botgrader.test", transport=httpx.MockTransport(handler), sleep=sleep, **kw)


def test_runs_every_chunk_in_order_and_adopts_session_id():
    executor, store = make_executor(single_check_registry(7, Category.FUNCTIONALITY))
    server = StubServer(executor)
    sleep = SleepRecorder()
    outcome = asyncio.run(_client(server, sleep).run("Assistant", "key"))

    assert outcome.state == RunState.COMPLETE
    assert outcome.scorecard.overall_score == 100
    assert outcome.session_id == "Assistant-0123456789ab"
    assert [r["chunk"] for r in server.requests] == list(range(7))
    assert server.requests[0]["session_id"] is None
    assert {r["session_id"] for r in server.requests[1:]} == {"Assistant-0123456789ab"}
    assert sleep.delays == [1.0] * 6
    assert outcome.live.progress == 100
    assert len(store) == 0


def test_retry_reuses_chunk_and_session_then_resets_backoff():
    executor, _ = make_executor(single_check_registry(5, Category.USABILITY))
    server = StubServer(executor, failures={
        2: [httpx.Response(503)],
        4: [httpx.ConnectError("connection reset")],
    })
    sleep = SleepRecorder()
    statuses = []
    outcome = asyncio.run(_client(server, sleep, on_status=statuses.append).run("Assistant", "key"))

    assert outcome.state == RunState.COMPLETE
    assert [r["chunk"] for r in server.requests] == [0, 1, 2, 2, 3, 4, 4]
    assert server.requests[3]["session_id"] == server.requests[2]["session_id"] == outcome.session_id
    # Backoff starts at 1s again for the second failing chunk
    assert sleep.delays == [1.0, 1.0, 1, 1.0, 1.0, 1]
    assert statuses[0] == "Connection lost, retrying in 1s... (attempt 1/3)"
    assert outcome.attempts == 7


def test_gives_up_after_three_retries():
    calls = []

    def handler(request):
        calls.append(json.loads(request.content)["chunk"])
        raise httpx.ConnectError("connection refused")

    sleep = SleepRecorder()
    outcome = asyncio.run(_client(handler, sleep).run("Assistant", "key"))

    assert outcome.state == RunState.FAILED
    assert calls == [0, 0, 0, 0]
    assert sleep.delays == [1, 2, 4]
    assert outcome.error == "Analysis failed after 3 retries: connection refused"
    assert outcome.scorecard is None


def test_stream_without_terminal_event_is_retried():
    executor, _ = make_executor(single_check_registry(2, Category.BRANDING))
    truncated = sse_response([ProgressEvent(type=EventType.PROGRESS, message="Processing chunk0 tests...", progress=0)])
    server = StubServer(executor, failures={0: [truncated]})
    sleep = SleepRecorder()
    outcome = asyncio.run(_client(server, sleep).run("Assistant", "key"))
    assert outcome.state == RunState.COMPLETE
    assert [r["chunk"] for r in server.requests] == [0, 0, 1]


def test_busy_session_response_is_retried():
    executor, _ = make_executor(single_check_registry(2, Category.BRANDING))
    busy = httpx.Response(409, json={"error": "Session is busy"})
    server = StubServer(executor, failures={1: [busy]})
    outcome = asyncio.run(_client(server, SleepRecorder()).run("Assistant", "key"))
    assert outcome.state == RunState.COMPLETE
    assert [r["chunk"] for r in server.requests] == [0, 1, 1]


def test_error_event_stops_without_retry():
    error = sse_response([ProgressEvent(type=EventType.ERROR, message="Unknown chunk index 9")])
    calls = []

    def handler(request):
        calls.append(request)
        return error

    sleep = SleepRecorder()
    outcome = asyncio.run(_client(handler, sleep).run("Assistant", "key"))
    assert outcome.state == RunState.FAILED
    assert outcome.error == "Unknown chunk index 9"
    assert len(calls) == 1
    assert sleep.delays == []


def test_results_from_finished_chunks_survive_a_terminal_failure():
    executor, _ = make_executor(single_check_registry(3, Category.USABILITY))
    server = StubServer(executor, failures={1: [httpx.ConnectError("down")] * 4})
    outcome = asyncio.run(_client(server, SleepRecorder()).run("Assistant", "key"))
    assert outcome.state == RunState.FAILED
    assert [r.name for r in outcome.live.results[Category.USABILITY]] == ["check 0"]


def test_events_are_forwarded_in_order():
    executor, _ = make_executor(single_check_registry(1, Category.BRANDING))
    seen = []
    asyncio.run(_client(StubServer(executor), SleepRecorder(), on_event=seen.append).run("Assistant", "key"))
    assert [e.type for e in seen] == [
        EventType.PROGRESS, EventType.TEST_START, EventType.TEST_COMPLETE, EventType.COMPLETE,
    ]


def test_live_progress_merges_repeated_results():
    live = LiveProgress()
    result = CheckResult(name="PNG support", status=CheckStatus.FAILED, score=30)
    retried = CheckResult(name="PNG support", status=CheckStatus.PASSED, score=100)
    for r in (result, retried):
        live.apply(ProgressEvent(type=EventType.TEST_COMPLETE, category=Category.FILE_SUPPORT, test_name=r.name, result=r))
    assert live.results[Category.FILE_SUPPORT] == [retried]
    assert live.message == "Completed: PNG support"


def test_sse_frames_round_trip_through_the_line_parser():
    from botgrader.events import parse_sse_lines

    executor, _ = make_executor(single_check_registry(2, Category.BRANDING))
    events = collect(executor.process_chunk("Assistant", "key", 0, "s-1"))
    lines = sse_body(events).decode().split("\r\n")
    lines.insert(0, ": ping")

    async def parse():
        async def gen():
            for line in lines:
                yield line
        return [e async for e in parse_sse_lines(gen())]

    parsed = asyncio.run(parse())
    assert [e.type for e in parsed] == [e.type for e in events]
    assert parsed[2].result == events[2].result
