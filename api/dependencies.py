# api/dependencies.py
"""
This module defines reusable dependencies for the API, such as the client identity lookup.
"""
from fastapi import Security
from fastapi.security import APIKeyHeader

from core.llm.exceptions import MissingIdentifier
from core.llm.models import resolve_model
from .session_manager import SessionRegistry, get_session_registry

USER_ID_HEADER = "User-ID"

# This tells FastAPI to look for a header named 'User-ID'
user_id_header = APIKeyHeader(name=USER_ID_HEADER, auto_error=False)


async def require_user_id(user_id: str = Security(user_id_header)) -> str:
    """
    Returns the caller's client identifier. Conversations are keyed by it.
    """
    if not user_id:
        raise MissingIdentifier(USER_ID_HEADER)
    return user_id


def require_model_alias(model: str) -> str:
    """Validates the model alias path parameter before anything else is looked at."""
    resolve_model(model)
    return model


def get_registry() -> SessionRegistry:
    return get_session_registry()
