"""Forecast API: FastAPI app serving the cached SENAMHI forecast."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from senamhi.config.schema import ServiceConfig
from senamhi.ingest.browser_fetcher import BrowserFetcher
from senamhi.ingest.errors import FetchError
from senamhi.models.common import now_ms
from senamhi.models.forecast import locations_to_json
from senamhi.service.coordinator import ForecastCoordinator
from senamhi.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

FORCE_VALUES = {"1", "true"}


def build_coordinator(config: ServiceConfig) -> ForecastCoordinator:
    return ForecastCoordinator(
        store=SnapshotStore(config.cache.path),
        fetcher=BrowserFetcher(config.source),
        ttl_ms=config.cache.ttl_ms,
    )


def create_app(
    config: ServiceConfig | None = None,
    coordinator: ForecastCoordinator | None = None,
) -> FastAPI:
    config = config or ServiceConfig()
    coordinator = coordinator or build_coordinator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(_log_loop_exception)
        prewarm_task = None
        if config.server.prewarm:
            prewarm_task = loop.create_task(prewarm(coordinator))
        app.state.prewarm_task = prewarm_task
        try:
            yield
        finally:
            if prewarm_task is not None and not prewarm_task.done():
                prewarm_task.cancel()
            await coordinator.aclose()
            loop.set_exception_handler(previous_handler)

    app = FastAPI(title="SENAMHI Forecast", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.coordinator = coordinator

    # ── Forecast endpoints ──────────────────────────────────────────

    @app.get("/api/forecast")
    @app.get("/api/pronostico", include_in_schema=False)
    async def get_forecast(force: str | None = None):
        """Cached forecast; ?force=1 or ?force=true refreshes it first."""
        try:
            locations = await coordinator.get_data(force=force in FORCE_VALUES)
        except FetchError:
            logger.exception("GET /api/forecast failed")
            return JSONResponse({"error": "Failed to fetch forecast"}, status_code=500)
        return locations_to_json(locations)

    @app.post("/api/forecast/refresh")
    @app.post("/api/pronostico/refresh", include_in_schema=False)
    async def refresh_forecast():
        """Force a refresh and report how many locations were fetched."""
        try:
            locations = await coordinator.get_data(force=True)
        except Exception:
            logger.exception("POST /api/forecast/refresh failed")
            return JSONResponse(
                {"ok": False, "error": "Refresh failed"}, status_code=500
            )
        return {"ok": True, "count": len(locations)}

    @app.get("/health")
    async def health():
        return {"ok": True, "ts": now_ms()}

    @app.exception_handler(Exception)
    async def unhandled_error(request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    # ── Static dashboard ────────────────────────────────────────────

    static_dir = Path(config.server.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    else:
        logger.info("Static directory %s not found; dashboard disabled", static_dir)

    return app


async def prewarm(coordinator: ForecastCoordinator) -> None:
    """Best-effort cache warm-up; failures are logged and dropped."""
    try:
        locations = await coordinator.get_data(force=False)
    except Exception as e:
        logger.warning("Cache pre-warm failed (ignored): %s", e)
        return
    logger.info("Cache pre-warmed (%d locations)", len(locations))


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    logger.error(
        "Unhandled asyncio error: %s", context.get("message"), exc_info=exc
    )
