# main.py
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api_market_value import value_router
from api_vehicle_options import options_router
from services.context import build_context
from services.errors import (
    AuthError,
    RateLimitError,
    UpstreamError,
    ValidationError,
    VehicleDataError,
    classify_error,
)
from services.settings import Settings

SETTINGS = Settings.from_env()

logging.basicConfig(
    level=getattr(logging, SETTINGS.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests install their own context before the app starts
    if getattr(app.state, "ctx", None) is None:
        app.state.ctx = build_context(SETTINGS)
    settings = app.state.ctx.settings
    sweeper = asyncio.create_task(app.state.ctx.cache.run_sweeper(settings.cache_sweep_interval_s))
    logger.info("vehicle data service up (provider=%s, sandbox=%s)", settings.valuation_provider, settings.is_sandbox)
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


# -----------------------------
# FastAPI setup
# -----------------------------
app = FastAPI(title="Vehicle Data Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # tighten for prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(options_router)   # /vehicle-options/*  (makes, models, years, aspects, cache/clear)
app.include_router(value_router)     # /vehicle-value, /vehicle-values


def status_for(exc: VehicleDataError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, RateLimitError):
        return 429
    if isinstance(exc, AuthError):
        return 503
    if isinstance(exc, UpstreamError):
        return 502
    return 500


@app.exception_handler(VehicleDataError)
async def vehicle_data_error(request: Request, exc: VehicleDataError):
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error_kind": classify_error(exc)})


@app.get("/health")
def health():
    ctx = getattr(app.state, "ctx", None)
    return {
        "ok": True,
        "service": "vehicle-data",
        "routes": ["/vehicle-options/*", "/vehicle-value", "/vehicle-values"],
        "cache": ctx.cache.stats() if ctx else None,
    }
