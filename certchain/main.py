from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from certchain.api.credentials import router as credentials_router
from certchain.api.health import router as health_router
from certchain.api.institutions import router as institutions_router
from certchain.api.subjects import router as subjects_router
from certchain.container import build_services
from certchain.core.config import SETTINGS
from certchain.core.logging import setup_logging
from certchain.middleware.metrics import MetricsMiddleware
from certchain.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)
from certchain.services.task_queue import InMemoryTaskQueue
from certchain.worker import run_worker

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_context_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Tests install their own services before the app starts.
    owned = getattr(app.state, "services", None) is None
    stop = asyncio.Event()
    worker: asyncio.Task | None = None
    if owned:
        services = build_services(SETTINGS)
        app.state.services = services
        if isinstance(services.task_queue, InMemoryTaskQueue):
            # No separate worker can see this queue; drain it in-process.
            logger.info("Starting in-process reconciliation worker")
            worker = asyncio.create_task(run_worker(services, stop=stop))
    try:
        yield
    finally:
        if worker is not None:
            stop.set()
            await worker
        if owned:
            # Lets shielded issuances whose callers disconnected finish
            # before the store clients close.
            await app.state.services.close()
            app.state.services = None


app = FastAPI(
    title="certchain-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(health_router)
app.include_router(subjects_router)
app.include_router(credentials_router)
app.include_router(institutions_router)

logger.info(
    "certchain-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
