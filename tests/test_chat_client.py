import asyncio

import httpx

from botgrader.chat_client import ChatClient


def _completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "Assistant",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }


def _ask(handler):
    async def go():
        chat = ChatClient(
            "key",
            base_url="https://chat.example/v1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        try:
            return await chat.complete("Assistant", [{"role": "user", "content": "Hello"}], max_tokens=50)
        finally:
            await chat.aclose()

    return asyncio.run(go())


def test_successful_completion():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json=_completion("Hi there!"))

    reply = _ask(handler)
    assert reply.ok
    assert reply.content == "Hi there!"
    assert reply.status_code == 200
    assert seen["url"] == "https://chat.example/v1/chat/completions"
    assert seen["auth"] == "Bearer key"


def test_empty_completion_is_not_ok():
    reply = _ask(lambda request: httpx.Response(200, json=_completion("")))
    assert not reply.ok
    assert reply.status_code == 200


def test_status_error_carries_server_message():
    reply = _ask(lambda request: httpx.Response(400, json={"error": {"message": "Unsupported attachment"}}))
    assert not reply.ok
    assert reply.status_code == 400
    assert reply.error == "Unsupported attachment"


def test_connection_error_has_no_status():
    def handler(request):
        raise httpx.ConnectError("refused")

    reply = _ask(handler)
    assert not reply.ok
    assert reply.status_code is None
    assert reply.error


def test_timeout_is_flagged():
    def handler(request):
        raise httpx.ReadTimeout("read timed out")

    reply = _ask(handler)
    assert not reply.ok
    assert reply.timed_out
    assert reply.status_code is None
