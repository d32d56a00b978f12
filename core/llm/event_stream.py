# core/llm/event_stream.py
"""
Decoding of the upstream's server-sent event stream.

Each record of interest is a single line of the form ``data: <json>``. The
literal line ``data: [DONE]`` marks the end of the reply.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional

from .exceptions import MalformedEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamEvent:
    """One decoded line. ``done`` is set for the sentinel, ``message`` may be empty."""
    message: str = ""
    done: bool = False


def parse_event_line(line: str) -> Optional[StreamEvent]:
    """
    Classifies one line of the event stream.

    Returns None for lines that carry no data (blank separators, comments,
    ``event:``/``id:`` fields). Raises MalformedEvent when a data line does not
    hold a JSON object.
    """
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):]
    if data == DONE_SENTINEL:
        return StreamEvent(done=True)

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise MalformedEvent(data, str(e)) from e

    if not isinstance(payload, dict):
        raise MalformedEvent(data, "event payload is not a JSON object")

    message = payload.get("message")
    if message is None:
        message = ""
    if not isinstance(message, str):
        raise MalformedEvent(data, "'message' field is not a string")
    return StreamEvent(message=message)
