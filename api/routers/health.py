# api/routers/health.py
import logging
from fastapi import APIRouter, Depends

from schemas.chat_schemas import HealthResponse
from ..dependencies import get_registry
from ..session_manager import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Health Check"]
)


@router.get("/health", response_model=HealthResponse)
def health(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    """
    Liveness probe. Reports the number of live sessions but never depends on them.
    """
    logger.debug("Health check endpoint '/health' was accessed.")
    return HealthResponse(status="ok", sessions=len(registry))
