"""
ftplace — core/config.py
─────────────────────────────────────────────────────────────────
Single source of truth for ALL environment variables.

Every other module imports from here; no os.getenv() scattered
across the worker, gateway and API layers.

Usage:
    from ftplace.core.config import cfg

    print(cfg.BASE_URL)
    print(cfg.MAX_PIXEL_RETRY)
─────────────────────────────────────────────────────────────────
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


class Config:
    # ── App ───────────────────────────────────
    ENV:       str = os.getenv("ENV", "development")   # "production" in prod
    DB_PATH:   str = os.getenv("FTPLACE_DB_PATH", "ftplace.db")
    ART_DIR:   str = os.getenv("FTPLACE_ART_DIR", "pixel_arts")
    HOST:      str = os.getenv("FTPLACE_HOST", "127.0.0.1")
    PORT:      int = _int("FTPLACE_PORT", 7980)

    # ── Remote canvas ─────────────────────────
    BASE_URL:        str   = os.getenv("FTPLACE_BASE_URL", "https://ftplace.42lausanne.ch")
    REQUEST_TIMEOUT: float = _float("FTPLACE_REQUEST_TIMEOUT", 15.0)

    # ── Auth ──────────────────────────────────
    ACCESS_TOKEN:         str   = os.getenv("FTPLACE_ACCESS_TOKEN", "")
    REFRESH_TOKEN:        str   = os.getenv("FTPLACE_REFRESH_TOKEN", "")
    TOKEN_FILE:           str   = os.getenv(
        "FTPLACE_TOKEN_FILE", os.path.join(os.path.expanduser("~"), ".ftplace_tokens.json")
    )
    TOKEN_REFRESH_MARGIN: float = _float("FTPLACE_TOKEN_REFRESH_MARGIN", 30.0)

    # ── Board ─────────────────────────────────
    BOARD_REFRESH_INTERVAL: float = _float("FTPLACE_BOARD_REFRESH_INTERVAL", 10.0)
    BOARD_MAX_AGE:          float = _float("FTPLACE_BOARD_MAX_AGE", 30.0)

    # ── Placement / retry ─────────────────────
    MAX_PIXEL_RETRY:    int   = _int("FTPLACE_MAX_PIXEL_RETRY", 3)
    RETRY_BASE_DELAY:   float = _float("FTPLACE_RETRY_BASE_DELAY", 1.0)
    RETRY_MAX_DELAY:    float = _float("FTPLACE_RETRY_MAX_DELAY", 30.0)
    MAX_COOLDOWN_SLEEP: float = _float("FTPLACE_MAX_COOLDOWN_SLEEP", 60.0)
    FALLBACK_COOLDOWN:  float = _float("FTPLACE_FALLBACK_COOLDOWN", 30.0)
    PLACE_DELAY:        float = _float("FTPLACE_PLACE_DELAY", 0.1)
    POLL_INTERVAL:      float = _float("FTPLACE_POLL_INTERVAL", 2.0)

    # ── Re-validation / status ────────────────
    VALIDATION_INTERVAL: float = _float("FTPLACE_VALIDATION_INTERVAL", 300.0)   # 0 = off
    STATUS_LOG_SIZE:     int   = _int("FTPLACE_STATUS_LOG_SIZE", 500)

    # ── Shortcuts ─────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def has_tokens(self) -> bool:
        return bool(self.ACCESS_TOKEN)

    def __repr__(self):
        return (
            f"<Config env={self.ENV} "
            f"base_url={self.BASE_URL} "
            f"tokens={'✓' if self.has_tokens else '✗'} "
            f"retry={self.MAX_PIXEL_RETRY}>"
        )


# Single global instance, import this everywhere
cfg = Config()
