"""
ftplace — credentials.py
─────────────────────────────────────────────────────────────────
CredentialState  → immutable token pair + base URL
CredentialStore  → the one shared container every task reads from
TokenStore       → durable slot on disk (~/.ftplace_tokens.json, 0600)

Readers take snapshot() per request. Only the refresh coordinator
(and an explicit re-login) ever call replace().
─────────────────────────────────────────────────────────────────
"""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from ftplace.core.config import cfg
from ftplace.core.security import preview

logger = logging.getLogger("ftplace.credentials")


# ─────────────────────────────────────────────
# State
# ─────────────────────────────────────────────
@dataclass(frozen=True)
class CredentialState:
    access_token:  str
    refresh_token: Optional[str] = None
    base_url:      str = cfg.BASE_URL
    refreshed_at:  float = field(default_factory=time.time)

    def cookie_header(self, include_refresh: bool = True) -> str:
        parts = [f"token={self.access_token}"] if self.access_token else []
        if include_refresh and self.refresh_token:
            parts.append(f"refresh={self.refresh_token}")
        return "; ".join(parts)

    def with_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> "CredentialState":
        return replace(
            self,
            access_token  = access_token,
            refresh_token = refresh_token or self.refresh_token,
            refreshed_at  = time.time(),
        )

    def __repr__(self):
        return (
            f"<CredentialState access={preview(self.access_token)} "
            f"refresh={preview(self.refresh_token)} base_url={self.base_url}>"
        )


class CredentialStore:
    """
    Shared container. `version` increases on every replace(); callers
    remember the version they used so a refresh episode can be detected
    as already handled.
    """

    def __init__(self, state: Optional[CredentialState] = None):
        self._state = state
        self.version = 0
        self.needs_reauth = False
        self._updated = asyncio.Event()

    @property
    def has_credentials(self) -> bool:
        return self._state is not None and bool(self._state.access_token)

    def snapshot(self) -> Optional[CredentialState]:
        return self._state

    def replace(self, state: CredentialState) -> None:
        self._state = state
        self.version += 1
        self.needs_reauth = False
        updated, self._updated = self._updated, asyncio.Event()
        updated.set()

    def mark_reauth_required(self) -> None:
        self.needs_reauth = True

    async def wait_for_update(self, timeout: Optional[float] = None) -> bool:
        """Block until replace() is called. Returns False on timeout."""
        event = self._updated
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


# ─────────────────────────────────────────────
# Token persistence
# ─────────────────────────────────────────────
class TokenData(BaseModel):
    access_token:  Optional[str] = None
    refresh_token: Optional[str] = None
    base_url:      Optional[str] = None
    refreshed_at:  Optional[float] = None


class TokenStore:
    def __init__(self, path=None):
        self.path = Path(path or cfg.TOKEN_FILE)

    def load(self) -> Optional[CredentialState]:
        if not self.path.exists():
            return None
        try:
            data = TokenData.model_validate(json.loads(self.path.read_text()))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Could not load saved tokens from {self.path}: {e}. Starting fresh.")
            return None

        if not data.access_token:
            return None
        return CredentialState(
            access_token  = data.access_token,
            refresh_token = data.refresh_token,
            base_url      = data.base_url or cfg.BASE_URL,
            refreshed_at  = data.refreshed_at or time.time(),
        )

    def save(self, state: CredentialState) -> None:
        data = TokenData(
            access_token  = state.access_token,
            refresh_token = state.refresh_token,
            base_url      = state.base_url,
            refreshed_at  = state.refreshed_at,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Create with 0600 up front so the secret is never world-readable
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(data.model_dump_json(indent=2))
        os.chmod(self.path, 0o600)
        logger.debug(f"Tokens saved → {self.path}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
