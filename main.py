# main.py

"""
The main entry point of the application.

This module initializes the FastAPI application, configures basic logging,
installs CORS and the error handlers, includes the API routers and defines
the main execution block to start the Uvicorn server.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers.chat import router as chat_router
from api.routers.health import router as health_router
from api.session_manager import get_session_registry, run_idle_sweeper
from config import settings
from core.llm.exceptions import GatewayError, InvalidRequestBody

# --- Logging Configuration ---
logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = [
    "Content-Type", "Content-Length", "Accept-Encoding", "X-CSRF-Token", "Authorization",
    "accept", "origin", "Cache-Control", "X-Requested-With", "User-ID",
    "x-vqd-accept", "x-vqd-4", "x-vqd-5",
]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    sweeper = None
    if settings.session_idle_ttl_seconds > 0:
        sweeper = asyncio.create_task(
            run_idle_sweeper(get_session_registry(), settings.session_sweep_interval_seconds)
        )
        logger.info("Idle session sweeper started.")
    yield
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


# --- FastAPI Application Initialization ---
app = FastAPI(
    title="DuckChat Relay",
    version="1.0.0",
    description="Relays per-client conversations to the DuckDuckGo AI Chat backend.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["POST", "OPTIONS", "GET", "PUT", "DELETE"],
    allow_headers=CORS_ALLOW_HEADERS,
)


# --- Error Handlers ---
@app.exception_handler(GatewayError)
async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"Request failed: [{exc.error_code}] {exc.message}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return await gateway_error_handler(request, InvalidRequestBody({"errors": exc.errors()}))


# --- Include API Routers ---
app.include_router(chat_router)
app.include_router(health_router)
logger.info("Chat and health routers included successfully.")


# --- Main Execution Block ---
if __name__ == "__main__":
    logger.info(f"Starting Uvicorn server on port {settings.port}...")
    uvicorn.run("main:app", host=settings.host, port=settings.port)
