# core/llm/duckchat_service.py
"""
Protocol adapter for the DuckDuckGo AI Chat backend.

The upstream is stateless apart from an opaque session token (the "vqd")
that it hands out on a status call and rotates on every chat response. A
Conversation keeps that token together with the message history and replays
the whole history on every turn.
"""
import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncGenerator, Callable, List, Optional

import httpx

from config import settings
from schemas.chat_schemas import ChatMessage
from .event_stream import parse_event_line
from .exceptions import MalformedEvent, NetworkError, UpstreamError, UpstreamUnavailable

logger = logging.getLogger(__name__)

TOKEN_HEADER = "x-vqd-4"
TOKEN_ACCEPT_HEADER = "x-vqd-accept"

ClientFactory = Callable[[], httpx.AsyncClient]


def default_client_factory() -> httpx.AsyncClient:
    """Builds a short-lived client with the configured timeouts."""
    timeout = httpx.Timeout(settings.http_read_timeout, connect=settings.http_connect_timeout)
    return httpx.AsyncClient(timeout=timeout, headers={"User-Agent": settings.user_agent})


class DuckChatService:
    """Talks to the upstream: negotiates session tokens and opens conversations."""

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        status_url: Optional[str] = None,
        chat_url: Optional[str] = None,
        turn_timeout: Optional[float] = None,
    ):
        self.client_factory = client_factory or default_client_factory
        self.status_url = status_url or settings.duckchat_status_url
        self.chat_url = chat_url or settings.duckchat_chat_url
        self.turn_timeout = turn_timeout if turn_timeout is not None else settings.turn_timeout_seconds

    async def fetch_session_token(self) -> str:
        """
        Asks the upstream for a fresh session token.

        Raises:
            UpstreamUnavailable: on a non-200 answer or when the token header is missing.
            NetworkError: when the upstream cannot be reached.
        """
        try:
            async with self.client_factory() as client:
                response = await client.get(self.status_url, headers={TOKEN_ACCEPT_HEADER: "1"})
        except httpx.HTTPError as e:
            logger.error(f"Network error while negotiating a session token: {e}")
            raise NetworkError(f"Error sending request: {e}") from e

        if response.status_code != 200:
            logger.error(f"Token negotiation failed with status {response.status_code}")
            raise UpstreamUnavailable(
                f"{response.status_code}: Failed to initialize chat. {response.reason_phrase}",
                status_code=response.status_code,
            )

        token = response.headers.get(TOKEN_HEADER)
        if not token:
            raise UpstreamUnavailable(
                "Failed to get session token from response headers",
                status_code=response.status_code,
            )
        return token

    async def open_conversation(self, model: str) -> "Conversation":
        """Negotiates a token and returns an empty Conversation bound to `model`."""
        token = await self.fetch_session_token()
        logger.info(f"Opened a new upstream conversation with model '{model}'.")
        return Conversation(token=token, model=model, service=self)


class Conversation:
    """
    Per-client chat state: the session tokens and the ordered message history.

    A Conversation is not safe for concurrent turns; callers serialize them.
    """

    def __init__(self, token: str, model: str, service: DuckChatService):
        self.previous_token = token
        self.current_token = token
        self._model = model
        self.history: List[ChatMessage] = []
        self._service = service
        self.created_at = time.monotonic()
        self.last_used_at = self.created_at

    @property
    def model(self) -> str:
        return self._model

    def touch(self) -> None:
        self.last_used_at = time.monotonic()

    def _build_payload(self) -> dict:
        return {
            "model": self._model,
            "messages": [msg.model_dump() for msg in self.history],
        }

    async def stream(self, content: str) -> AsyncGenerator[str, None]:
        """
        Runs one turn and yields the reply incrementally.

        The user message is appended before the request is sent and stays in
        the history if the turn fails. Tokens are rotated and the assistant
        message is appended only once the stream has ended normally.
        """
        if not self.current_token:
            raise UpstreamUnavailable("Conversation has no session token; delete it and start again")

        self.touch()
        self.history.append(ChatMessage(role="user", content=content))
        headers = {
            TOKEN_HEADER: self.current_token,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._service.turn_timeout if self._service.turn_timeout else None
        chunks: List[str] = []

        try:
            async with self._service.client_factory() as client:
                async with client.stream(
                    "POST", self._service.chat_url, json=self._build_payload(), headers=headers
                ) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"Upstream chat call failed with status {response.status_code}")
                        raise UpstreamError(response.status_code, body)

                    async for line in response.aiter_lines():
                        if deadline is not None and loop.time() > deadline:
                            raise NetworkError("Timed out while reading the upstream reply")
                        try:
                            event = parse_event_line(line)
                        except MalformedEvent as e:
                            logger.warning(f"Skipping event: {e.message} ({e.payload!r})")
                            continue
                        if event is None:
                            continue
                        if event.done:
                            break
                        if event.message:
                            chunks.append(event.message)
                            yield event.message

                    refreshed_token = response.headers.get(TOKEN_HEADER, "")
        except httpx.HTTPError as e:
            logger.error(f"Network error during chat turn: {e}")
            raise NetworkError(f"Error sending request: {e}") from e

        self.previous_token = self.current_token
        self.current_token = refreshed_token
        if not refreshed_token:
            logger.warning("Upstream reply carried no refreshed session token; conversation cannot continue.")
        self.history.append(ChatMessage(role="assistant", content="".join(chunks)))
        self.touch()

    async def fetch(self, content: str) -> str:
        """Runs one turn and returns the whole reply as a single string."""
        chunks = []
        async with aclosing(self.stream(content)) as reply:
            async for chunk in reply:
                chunks.append(chunk)
        return "".join(chunks)

    def redo(self) -> None:
        """Rolls the conversation back to before the most recent turn."""
        self.current_token = self.previous_token
        if len(self.history) >= 2:
            del self.history[-2:]
