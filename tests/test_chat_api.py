import json

import httpx
import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_registry
from main import app


@pytest.fixture
def client(registry):
    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def post_chat(client, message="hello", model="llama", user_id="user-1", path=""):
    headers = {"User-ID": user_id} if user_id else {}
    return client.post(f"/chat/{model}{path}", json={"message": message}, headers=headers)


def test_chat_returns_aggregated_reply(client, upstream, registry):
    upstream.reply('{"message":"Hi"}', '{"message":" there"}', "[DONE]", token="T2")

    response = post_chat(client)

    assert response.status_code == 200
    assert response.json() == {"response": "Hi there"}
    conversation = registry.get("user-1")
    assert [(m.role, m.content) for m in conversation.history] == [
        ("user", "hello"), ("assistant", "Hi there"),
    ]
    assert conversation.current_token == "T2"
    assert conversation.previous_token == "T1"


def test_conversation_continues_across_requests(client, upstream):
    upstream.reply('{"message":"one"}', "[DONE]", token="T2")
    upstream.reply('{"message":"two"}', "[DONE]", token="T3")

    assert post_chat(client, "a").json() == {"response": "one"}
    assert post_chat(client, "b").json() == {"response": "two"}

    assert upstream.status_calls == 1
    assert [r["token"] for r in upstream.chat_requests] == ["T1", "T2"]
    assert len(upstream.chat_requests[1]["payload"]["messages"]) == 3


def test_invalid_model(client, upstream):
    response = post_chat(client, model="gpt-5")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid model"}
    assert upstream.status_calls == 0


def test_missing_user_id(client, upstream):
    response = post_chat(client, user_id=None)
    assert response.status_code == 400
    assert response.json() == {"error": "User-ID header is required"}
    assert upstream.status_calls == 0


@pytest.mark.parametrize("content", ['{"text": "hi"}', "not json", '{"message": 5}'])
def test_invalid_body(client, upstream, content):
    response = client.post(
        "/chat/llama", content=content, headers={"User-ID": "user-1", "Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}
    assert upstream.status_calls == 0


def test_negotiation_failure_is_server_error(client, upstream, registry):
    upstream.status_code = 503
    response = post_chat(client)
    assert response.status_code == 502
    assert "503" in response.json()["error"]
    assert len(registry) == 0


def test_upstream_error_includes_status_and_body(client, upstream):
    upstream.reply(status_code=418, content=b"teapot", token=None)
    response = post_chat(client)
    assert response.status_code == 502
    assert "418" in response.json()["error"]
    assert "teapot" in response.json()["error"]


def test_delete_session(client, upstream):
    upstream.reply('{"message":"Hi"}', "[DONE]")
    post_chat(client)

    first = client.delete("/chat/llama", headers={"User-ID": "user-1"})
    second = client.delete("/chat/llama", headers={"User-ID": "user-1"})

    assert first.status_code == 200
    assert first.json() == {"message": "Chat session deleted"}
    assert second.status_code == 404
    assert second.json() == {"error": "Chat session not found"}


def test_delete_requires_user_id(client):
    response = client.delete("/chat/llama")
    assert response.status_code == 400


def test_stream_endpoint_relays_events(client, upstream):
    upstream.reply('{"message":"Hi"}', '{"message":" there"}', "[DONE]")

    response = post_chat(client, path="/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    records = [line for line in response.text.split("\n\n") if line]
    assert records == [
        f"data: {json.dumps({'message': 'Hi'})}",
        f"data: {json.dumps({'message': ' there'})}",
        "data: [DONE]",
    ]


def test_stream_endpoint_reports_failure_before_first_chunk(client, upstream):
    upstream.reply(status_code=500, content=b"boom", token=None)
    response = post_chat(client, path="/stream")
    assert response.status_code == 502


def test_stream_endpoint_reports_failure_mid_stream(client, upstream):
    async def broken_body():
        yield b'data: {"message":"Hi"}\n\n'
        raise httpx.ReadError("connection reset")

    upstream.reply(content=broken_body())
    response = post_chat(client, path="/stream")

    assert response.status_code == 200
    assert response.text.startswith('data: {"message": "Hi"}\n\n')
    assert "event: error" in response.text
    assert "[DONE]" not in response.text


def test_health(client, upstream):
    assert client.get("/health").json() == {"status": "ok", "sessions": 0}
    upstream.reply('{"message":"Hi"}', "[DONE]")
    post_chat(client)
    assert client.get("/health").json() == {"status": "ok", "sessions": 1}


def test_models(client):
    models = client.get("/models").json()["models"]
    assert models["llama"] == "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo"
    assert set(models) == {"gpt-4o-mini", "claude-3-haiku", "llama", "mixtral"}


def test_cors_preflight(client):
    response = client.options(
        "/chat/llama",
        headers={
            "Origin": "http://example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "User-ID",
        },
    )
    assert response.status_code == 200
    assert "User-ID".lower() in response.headers["access-control-allow-headers"].lower()
