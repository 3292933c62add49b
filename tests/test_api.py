import json

import pytest
from fastapi.testclient import TestClient

from botgrader.chat_client import ChatReply
from botgrader.executor import ChunkExecutor
from botgrader.schemas import Category

from main import app
from stubs import StubChat, StubFetcher, no_sleep, single_check_registry


@pytest.fixture
def client():
    with TestClient(app) as c:
        # Swap in stub checks on top of the store the endpoint leases from
        app.state.executor = ChunkExecutor(
            app.state.sessions,
            app.state.settings,
            registry=single_check_registry(2, Category.FUNCTIONALITY),
            fetcher=StubFetcher(),
            chat_factory=lambda api_key: StubChat(),
            sleep=no_sleep,
        )
        yield c


def _events(response):
    return [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "botgrader-api"}


def test_chunk_request_requires_api_key(client):
    r = client.post("/analyze/chunked", json={"bot_id": "Assistant", "api_key": ""})
    assert r.status_code == 422


def test_negative_chunk_rejected(client):
    r = client.post("/analyze/chunked", json={"bot_id": "Assistant", "api_key": "k", "chunk": -1})
    assert r.status_code == 422


def test_chunked_analysis_streams_events_and_resumes_session(client):
    r = client.post("/analyze/chunked", json={"bot_id": "Assistant", "api_key": "k", "chunk": 0})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = _events(r)
    assert [e["type"] for e in events] == ["progress", "test_start", "test_complete", "chunk_complete"]
    session_id = events[0]["session_id"]
    assert session_id.startswith("Assistant-")
    assert len(session_id) == len("Assistant-") + 12
    assert events[-1]["next_chunk"] == 1
    # Null fields are left out of the frames
    assert "scorecard" not in events[-1]

    r = client.post(
        "/analyze/chunked",
        json={"bot_id": "Assistant", "api_key": "k", "chunk": 1, "session_id": session_id},
    )
    events = _events(r)
    assert events[-1]["type"] == "complete"
    assert events[-1]["scorecard"]["overall_score"] == 100
    assert [res["name"] for res in events[-1]["scorecard"]["categories"]["functionality"]] == ["check 0", "check 1"]
    assert session_id not in app.state.sessions
    assert not app.state.sessions.is_leased(session_id)


def test_leased_session_returns_409(client):
    token = app.state.sessions.acquire("Assistant-busy")
    try:
        r = client.post(
            "/analyze/chunked",
            json={"bot_id": "Assistant", "api_key": "k", "chunk": 1, "session_id": "Assistant-busy"},
        )
    finally:
        app.state.sessions.release("Assistant-busy", token)
    assert r.status_code == 409
    assert r.json()["session_id"] == "Assistant-busy"


def test_unknown_chunk_streams_error_event(client):
    r = client.post("/analyze/chunked", json={"bot_id": "Assistant", "api_key": "k", "chunk": 9})
    events = _events(r)
    assert [e["type"] for e in events] == ["error"]
    assert "Unknown chunk index 9" in events[0]["message"]


def test_single_shot_analyze(client):
    r = client.post("/analyze", json={"bot_id": "Assistant", "api_key": "k"})
    assert r.status_code == 200
    card = r.json()["scorecard"]
    assert card["bot_id"] == "Assistant"
    assert card["overall_score"] == 100
    assert len(card["categories"]["functionality"]) == 2


def _prompt(client, reply, **body):
    chat = StubChat(default=reply)
    app.state.chat_factory = lambda api_key: chat
    payload = {"bot_id": "Assistant", "prompt": "Say hi", "api_key": "k"}
    payload.update(body)
    return client.post("/test-bot", json=payload), chat


def test_prompt_returns_bot_reply(client):
    r, chat = _prompt(client, ChatReply(ok=True, content="Hi!", status_code=200))
    assert r.status_code == 200
    assert r.json() == {"response": "Hi!", "status": "success"}
    assert chat.calls[0]["model"] == "Assistant"
    assert chat.calls[0]["messages"] == [{"role": "user", "content": "Say hi"}]
    assert chat.closed


def test_prompt_requires_bot_and_prompt(client):
    r, chat = _prompt(client, ChatReply(ok=True, content="Hi!", status_code=200), prompt="  ")
    assert r.status_code == 400
    assert r.json() == {"error": "Bot name and prompt are required"}
    assert chat.calls == []


def test_prompt_requires_api_key(client):
    r, _ = _prompt(client, ChatReply(ok=True, content="Hi!", status_code=200), api_key="")
    assert r.status_code == 422


@pytest.mark.parametrize("reply,status,message", [
    (ChatReply(ok=False, status_code=404, error="Not Found"), 404,
     'Bot "Assistant" not found. Please check the bot name.'),
    (ChatReply(ok=False, status_code=403, error="Forbidden"), 403,
     'Access denied to bot "Assistant". Bot may be private or require authentication.'),
    (ChatReply(ok=False, status_code=429, error="Rate limit exceeded"), 429, "Rate limit exceeded"),
    (ChatReply(ok=False, status_code=500), 500, "Bot responded with status: 500"),
    (ChatReply(ok=False, error="Request timed out.", timed_out=True), 408,
     "Request timeout - bot took too long to respond"),
    (ChatReply(ok=False, error="Connection error."), 502, "Connection error."),
    (ChatReply(ok=False, status_code=200, error="Empty completion"), 502, "Bot returned an empty response"),
])
def test_prompt_error_mapping(client, reply, status, message):
    r, _ = _prompt(client, reply)
    assert r.status_code == status
    assert r.json() == {"error": message}
