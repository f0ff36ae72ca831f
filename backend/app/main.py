from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import os

from app.api.sessions import router as sessions_router
from app.api.ws_sim import router as sim_ws_router
from app.scenario.loader import ScenarioCatalog
from app.session.service import SimulationService
from app.system_metrics import get_metrics_snapshot
from core.config import (
    SCENARIO_STRICT,
    SESSION_CLEANUP_INTERVAL_SEC,
    SESSION_IDLE_TTL_SEC,
    TEMPLATES_DIR,
)

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("app.main")


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


def build_service() -> SimulationService:
    catalog = ScenarioCatalog(TEMPLATES_DIR, strict=SCENARIO_STRICT)
    return SimulationService(catalog)


def create_app(service: SimulationService | None = None, idle_ttl_sec: float = SESSION_IDLE_TTL_SEC) -> FastAPI:
    app = FastAPI(title="Recrio Simulation Backend")
    allowed_origins = _get_allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=False,
    )
    app.state.simulation = service or build_service()
    app.state.session_cleanup_task = None

    app.include_router(sessions_router)
    app.include_router(sim_ws_router)

    @app.on_event("startup")
    async def startup_banner():
        logger.info("[SYSTEM] CORS allow_origins=%s", allowed_origins)
        logger.info("[SYSTEM] templates_dir=%s strict=%s", app.state.simulation.catalog.templates_dir, app.state.simulation.catalog.strict)
        if idle_ttl_sec <= 0:
            logger.info("[SYSTEM] idle session eviction disabled")
            return

        async def _session_cleanup_loop():
            while True:
                await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
                removed = await app.state.simulation.evict_idle(idle_ttl_sec)
                if removed:
                    logger.info("[SYSTEM] evicted idle sessions=%s", len(removed))

        app.state.session_cleanup_task = asyncio.create_task(_session_cleanup_loop())

    @app.on_event("shutdown")
    async def shutdown_handler():
        task = app.state.session_cleanup_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            finally:
                app.state.session_cleanup_task = None
        logger.info("[SYSTEM] shutdown complete")

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.get("/metrics")
    async def metrics():
        return get_metrics_snapshot(extra={"sessions_in_store": len(app.state.simulation.store)})

    return app


app = create_app()
