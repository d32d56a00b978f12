# core/llm/factory.py
"""
Factory module for the upstream chat service.
"""
import logging

from .duckchat_service import DuckChatService

logger = logging.getLogger(__name__)

# A single, cached instance of the service
_duckchat_service_instance: DuckChatService | None = None


def get_duckchat_service() -> DuckChatService:
    """
    Returns the process-wide DuckChatService, creating it on first use.
    """
    global _duckchat_service_instance
    if _duckchat_service_instance is None:
        logger.info("Creating DuckChat upstream service.")
        _duckchat_service_instance = DuckChatService()
    return _duckchat_service_instance
