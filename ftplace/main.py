"""
ftplace — main.py
─────────────────────────────────────────────────────────────────
Central entry point. Builds the Scheduler and mounts the control API.

Start server:
    uvicorn ftplace.main:app --port 7980
    python -m ftplace.main

File map:
    scheduler.py → wires gateway, refresher, worker, validator
    api.py       → /api/queue/*, /api/status, /api/arts, /api/auth/tokens
─────────────────────────────────────────────────────────────────
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ftplace import __version__
from ftplace.api import router as api_router
from ftplace.core.config import cfg
from ftplace.core.database import init_queue_tables
from ftplace.scheduler import Scheduler

# ── Logging ───────────────────────────────────
logging.basicConfig(
    level   = logging.INFO,
    format  = "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt = "%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("ftplace.main")


# ─────────────────────────────────────────────
# Startup / Shutdown
# ─────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Runs on startup → queue table, credentials, background tasks.
    Runs on shutdown → stop token, active item back to PENDING.
    """
    logger.info(f"🚀 ftplace scheduler starting [{cfg.ENV}] → {cfg.BASE_URL}")

    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is None:
        await init_queue_tables(cfg.DB_PATH)
        logger.info("✓ Queue table ready")
        scheduler = Scheduler()
        app.state.scheduler = scheduler
    await scheduler.start()

    logger.info("✅ ftplace is live.")

    yield  # App runs here

    await scheduler.stop()
    logger.info("ftplace shutting down.")


# ─────────────────────────────────────────────
# App
# ─────────────────────────────────────────────
app = FastAPI(
    title       = "ftplace scheduler",
    description = "Placement scheduler for pixel arts on a rate-limited shared canvas",
    version     = __version__,
    docs_url    = "/docs"  if not cfg.is_production else None,
    redoc_url   = "/redoc" if not cfg.is_production else None,
    lifespan    = lifespan,
)

app.include_router(api_router)


# ─────────────────────────────────────────────
# Health Check
# ─────────────────────────────────────────────
@app.get("/health", tags=["system"])
async def health():
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status":  "ok",
        "app":     "ftplace",
        "version": __version__,
        "env":     cfg.ENV,
        "running": bool(scheduler and scheduler.running),
    }


# ─────────────────────────────────────────────
# Global Error Handler
# ─────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled error: {exc}", exc_info=True)
    return JSONResponse(
        status_code = 500,
        content     = {"detail": "Internal server error."},
    )


# ─────────────────────────────────────────────
# Run
# ─────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ftplace.main:app",
        host   = cfg.HOST,
        port   = cfg.PORT,
        reload = False,
    )
