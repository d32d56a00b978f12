import asyncio
import json
from typing import Callable, List, Optional

import httpx
import pytest

from api.session_manager import SessionRegistry
from core.llm.duckchat_service import DuckChatService

STATUS_URL = "https://duckchat.test/duckchat/v1/status"
CHAT_URL = "https://duckchat.test/duckchat/v1/chat"


def sse(*payloads: str) -> bytes:
    """Builds an event-stream body, one `data:` record per payload."""
    return "".join(f"data: {p}\n\n" for p in payloads).encode()


class TrackedBody(httpx.AsyncByteStream):
    """Response body that records when httpx closes it."""

    def __init__(self, *chunks: bytes, on_close: Optional[Callable[[], None]] = None):
        self.chunks = chunks
        self.closed: List[bool] = []
        self.on_close = on_close

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed.append(True)
        if self.on_close is not None:
            self.on_close()


class FakeUpstream:
    """Stands in for the chat backend behind an httpx.MockTransport."""

    def __init__(self):
        self.status_tokens: List[Optional[str]] = ["T1"]
        self.status_code = 200
        self.status_delay = 0.0
        self.status_calls = 0
        self.chat_requests: List[dict] = []
        self._replies: List[httpx.Response] = []

    def reply(self, *payloads: str, token: Optional[str] = "T2", status_code: int = 200,
              content=None, stream: Optional[httpx.AsyncByteStream] = None) -> "FakeUpstream":
        headers = {"x-vqd-4": token} if token else {}
        if stream is not None:
            self._replies.append(httpx.Response(status_code, headers=headers, stream=stream))
            return self
        body = content if content is not None else sse(*payloads)
        self._replies.append(httpx.Response(status_code, headers=headers, content=body))
        return self

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/status"):
            self.status_calls += 1
            if self.status_delay:
                await asyncio.sleep(self.status_delay)
            token = self.status_tokens[min(self.status_calls, len(self.status_tokens)) - 1]
            headers = {"x-vqd-4": token} if token else {}
            return httpx.Response(self.status_code, headers=headers)

        self.chat_requests.append({
            "token": request.headers.get("x-vqd-4"),
            "accept": request.headers.get("accept"),
            "payload": json.loads(request.content),
        })
        return self._replies.pop(0)

    def service(self, turn_timeout: float = 30.0) -> DuckChatService:
        transport = httpx.MockTransport(self.handler)
        return DuckChatService(
            client_factory=lambda: httpx.AsyncClient(transport=transport),
            status_url=STATUS_URL,
            chat_url=CHAT_URL,
            turn_timeout=turn_timeout,
        )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def registry(upstream) -> SessionRegistry:
    return SessionRegistry(service=upstream.service(), idle_ttl_seconds=3600, reject_concurrent_turns=False)
