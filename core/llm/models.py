# core/llm/models.py
"""
The fixed catalogue of chat models the gateway can relay to.

Callers select a model with a short alias in the URL; the upstream service
expects the full model identifier.
"""
from typing import Dict

from .exceptions import InvalidModel

MODEL_ALIASES: Dict[str, str] = {
    "gpt-4o-mini": "gpt-4o-mini",
    "claude-3-haiku": "claude-3-haiku-20240307",
    "llama": "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
    "mixtral": "mistralai/Mixtral-8x7B-Instruct-v0.1",
}


def resolve_model(alias: str) -> str:
    """Returns the upstream model identifier for a recognised alias."""
    try:
        return MODEL_ALIASES[alias]
    except KeyError:
        raise InvalidModel(alias) from None
