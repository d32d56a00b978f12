# core/chat_orchestrator.py
import json
import logging
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator

from api.session_manager import SessionRegistry
from core.llm.event_stream import DATA_PREFIX, DONE_SENTINEL
from core.llm.exceptions import GatewayError

logger = logging.getLogger(__name__)


async def process_chat_request(
    registry: SessionRegistry, client_id: str, model_alias: str, message: str
) -> str:
    """
    Resolves (or creates) the client's conversation and runs one turn,
    returning the aggregated assistant reply.
    """
    async with registry.turn_lock(client_id):
        conversation = await registry.get_or_create(client_id, model_alias)
        logger.info(f"Forwarding message for client '{client_id}' to model '{conversation.model}'.")
        return await conversation.fetch(message)


async def process_chat_request_stream(
    registry: SessionRegistry, client_id: str, model_alias: str, message: str
) -> AsyncGenerator[str, None]:
    """
    Same as process_chat_request, but yields the reply chunk by chunk.
    The client's turn lock is held until the generator finishes or is closed.
    """
    async with registry.turn_lock(client_id):
        conversation = await registry.get_or_create(client_id, model_alias)
        logger.info(f"Streaming message for client '{client_id}' to model '{conversation.model}'.")
        # Close the upstream reply before the turn lock is released.
        async with aclosing(conversation.stream(message)) as reply:
            async for chunk in reply:
                yield chunk


async def prime_stream(chunks: AsyncGenerator[str, None]) -> AsyncIterator[str]:
    """
    Runs the stream up to its first chunk so that failures before any output
    surface as ordinary exceptions, then returns an iterator over the whole stream.
    """
    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        first = None

    async def relay() -> AsyncGenerator[str, None]:
        try:
            if first is not None:
                yield first
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()

    return relay()


async def to_event_stream(chunks: AsyncIterator[str]) -> AsyncGenerator[str, None]:
    """Encodes chunks as server-sent events, ending with the [DONE] sentinel."""
    try:
        async for chunk in chunks:
            yield f"{DATA_PREFIX}{json.dumps({'message': chunk})}\n\n"
    except GatewayError as e:
        # Headers are already sent; report the failure in-band.
        logger.error(f"Chat stream failed after it started: {e.message}")
        yield f"event: error\n{DATA_PREFIX}{json.dumps({'error': e.message})}\n\n"
        return
    yield f"{DATA_PREFIX}{DONE_SENTINEL}\n\n"
