"""
ftplace — core/database.py
─────────────────────────────────────────────────────────────────
Single place for:
  - DB connection helper
  - Queue table CREATE statement
  - One init_queue_tables() call on startup

Usage:
    from ftplace.core.database import get_db, init_queue_tables

    await init_queue_tables(db_path)

    async with get_db(db_path) as db:
        await db.execute(...)
─────────────────────────────────────────────────────────────────
"""

import logging
import aiosqlite
from contextlib import asynccontextmanager

from ftplace.core.config import cfg

logger = logging.getLogger("ftplace.database")


# ─────────────────────────────────────────────
# Connection helper
# ─────────────────────────────────────────────
@asynccontextmanager
async def get_db(db_path: str = None):
    """
    Use instead of aiosqlite.connect() everywhere.

    async with get_db() as db:
        await db.execute(...)
    """
    async with aiosqlite.connect(db_path or cfg.DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        yield db


# ─────────────────────────────────────────────
# Table Definitions
# ─────────────────────────────────────────────
QUEUE_SQL = """
    CREATE TABLE IF NOT EXISTS queue_items (
        id            TEXT PRIMARY KEY,
        position      INTEGER NOT NULL,
        art           TEXT NOT NULL,               -- JSON (PixelArt)
        anchor_x      INTEGER NOT NULL,
        anchor_y      INTEGER NOT NULL,
        priority      INTEGER NOT NULL DEFAULT 3,
        status        TEXT NOT NULL DEFAULT 'pending',
        pixels_placed INTEGER NOT NULL DEFAULT 0,
        pixels_total  INTEGER NOT NULL DEFAULT 0,
        fail_reason   TEXT,
        created_at    TEXT NOT NULL,
        started_at    TEXT,
        finished_at   TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_queue_order
        ON queue_items(status, priority, created_at);
"""


# ─────────────────────────────────────────────
# Init, call once on startup
# ─────────────────────────────────────────────
async def init_queue_tables(db_path: str = None):
    """Creates the queue table. Safe to call multiple times (IF NOT EXISTS)."""
    path = db_path or cfg.DB_PATH
    async with aiosqlite.connect(path) as db:
        await db.executescript(QUEUE_SQL)
        await db.commit()
    logger.info(f"✓ Queue tables ready → {path}")
