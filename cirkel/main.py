import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from cirkel/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from cirkel.core.config import settings, validate_config
from cirkel.core.database import create_all_tables
from cirkel.core.logging import configure_logging
from cirkel.core.middleware.request_id import RequestIdMiddleware
from cirkel.core.middleware.metrics import MetricsMiddleware
from cirkel.core.validation import validate_env
from cirkel.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from cirkel.api import (
    billing,
    quota,
    follows,
    notifications,
    join_requests,
    conversations,
    realtime,
    health,
    metrics,
)
from cirkel.realtime.hub import hub

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("cirkel")
    logger.info("Starting Cirkel backend...")
    app.state.startup_time = time.time()
    create_all_tables()
    try:
        yield
    finally:
        hub.clear()
        logging.getLogger("cirkel").info("Stopping Cirkel backend...")


app = FastAPI(title="Cirkel - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(quota.router, tags=["quota"])
app.include_router(follows.router, tags=["follows"])
app.include_router(notifications.router, tags=["notifications"])
app.include_router(join_requests.router, tags=["join-requests"])
app.include_router(conversations.router, tags=["conversations"])
app.include_router(realtime.router, tags=["realtime"])
app.include_router(health.root_router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])
