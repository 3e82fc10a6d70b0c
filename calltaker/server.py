"""FastAPI server for the call-taker backend.

Run with:
    uvicorn calltaker.server:app --host 0.0.0.0 --port 8000

or build a differently wired instance with :func:`create_app`.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from calltaker.agent import CallTakerAgent, create_call_taker_agent
from calltaker.api.routes import router
from calltaker.config import CALLTAKER_CONFIG_DIR, CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from calltaker.directory import load_directory
from calltaker.services.errors import ConfigurationError
from calltaker.services.metrics import metrics

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Call-Taker Agent"
VERSION = "1.0.0"


def check_directory(config_dir: str) -> bool:
    """Load the directory files once at start-up and report problems.

    Not fatal: the files are re-read per call, so a bad deploy can be fixed
    in place without restarting.
    """
    try:
        directory = load_directory(config_dir)
    except ConfigurationError as e:
        logger.warning("Directory check failed, calls will error until fixed: %s", e)
        return False
    logger.info("Directory OK: %d companies", len(directory.company_names))
    return True


def create_app(
    agent_factory: Callable[[], CallTakerAgent] = create_call_taker_agent,
    *,
    config_dir: str = CALLTAKER_CONFIG_DIR,
) -> FastAPI:
    """Build the API with its lifespan, middleware and routes."""

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        # One agent per process so the caches' single-flight spans all requests
        application.state.directory_ok = check_directory(config_dir)
        application.state.agent = agent_factory()
        logger.info("Agent ready.")
        try:
            yield
        finally:
            await application.state.agent.aclose()
            application.state.agent = None
            metrics.close()

    application = FastAPI(
        title=SERVICE_NAME,
        description=(
            "Voice call-taker backend: routes calls by extension, looks up the "
            "caller's reservation in the dispatch system and drafts the agent reply."
        ),
        version=VERSION,
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_context(request: Request, call_next) -> Response:
        """Tag the request with an ID and time it.

        ``X-Request-ID`` is taken from the caller when present so the
        telephony side can quote it; ``X-Response-Time-Ms`` is the handler
        time in milliseconds.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "[%s] %s %s -> %d (%.0fms)",
            request_id, request.method, request.url.path, response.status_code, elapsed_ms,
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.1f}"
        return response

    application.include_router(router)

    @application.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "docs": "/docs",
            "health": "/api/health",
            "directory_ok": getattr(application.state, "directory_ok", None),
        }

    return application


app = create_app()


if __name__ == "__main__":
    logger.info("Starting call-taker API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("calltaker.server:app", host=SERVER_HOST, port=SERVER_PORT)
