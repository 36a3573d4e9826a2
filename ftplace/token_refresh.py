"""
ftplace — token_refresh.py
─────────────────────────────────────────────────────────────────
TokenRefreshCoordinator — single-flight token refresh.

The board refresher and the placement worker can both hit a 426 at
the same moment. Refresh tokens rotate on use, so two parallel
exchanges would invalidate each other. Rules:

  - first caller in an expiry episode starts THE refresh
  - everyone else awaits that same in-flight refresh
  - callers that saw the old credentials AFTER the refresh already
    finished return immediately (version check)
  - a 426 that already carries a rotated pair installs that pair,
    no second exchange (the old refresh token is dead by then)
  - success → CredentialStore.replace() + TokenStore.save()
  - failure → AuthFatalError for every waiter, re-login required;
    until new credentials arrive, further 426s fail fast

Usage:
    result = await coordinator.call(gateway.place_pixel, x, y, color)
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ftplace.core.config import cfg
from ftplace.core.security import is_expiring
from ftplace.credentials import CredentialStore, TokenStore
from ftplace.gateway import ErrorKind, GatewayResult, PlacementGateway, TokenPair
from ftplace.status import StatusLog

logger = logging.getLogger("ftplace.token_refresh")


# ─────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────
class AuthError(Exception):
    """Base auth exception."""

class AuthFatalError(AuthError):
    """Refresh token invalid or expired, user must log in again."""


class TokenRefreshCoordinator:

    def __init__(
        self,
        credentials: CredentialStore,
        gateway: PlacementGateway,
        token_store: Optional[TokenStore] = None,
        status: Optional[StatusLog] = None,
        refresh_margin: float = cfg.TOKEN_REFRESH_MARGIN,
    ):
        self.credentials    = credentials
        self.gateway        = gateway
        self.token_store    = token_store
        self.status         = status
        self.refresh_margin = refresh_margin
        self.refresh_count  = 0
        self._inflight: Optional[asyncio.Future] = None
        self._kept_token: Optional[str] = None   # access token the server re-confirmed unchanged

    # ─── Single-flight refresh ─────────────────

    async def ensure_fresh(
        self,
        reason: str,
        seen_version: Optional[int] = None,
        rotated: Optional[TokenPair] = None,
    ) -> None:
        """
        Raises AuthFatalError when the refresh exchange fails.
        `seen_version` is the CredentialStore.version the caller used.
        `rotated` is a pair the server already handed back with its 426;
        it is installed as-is instead of running a second exchange.
        """
        if seen_version is not None and self.credentials.version != seen_version:
            return

        if self._inflight is None:
            if rotated is None and self.credentials.needs_reauth:
                # Refresh token already rejected; only new credentials help
                raise AuthFatalError("re-authentication required, refresh token was rejected")
            self._inflight = asyncio.ensure_future(self._refresh(reason, rotated))
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            logger.debug(f"Joining in-flight token refresh ({reason})")

        # shield: a cancelled waiter must not cancel the exchange for everyone else
        await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future) -> None:
        if self._inflight is future:
            self._inflight = None
        if not future.cancelled():
            # Mark retrieved so a failure nobody awaited doesn't warn at GC
            future.exception()

    async def _refresh(self, reason: str, rotated: Optional[TokenPair] = None) -> None:
        creds = self.credentials.snapshot()
        if creds is None:
            self.credentials.mark_reauth_required()
            raise AuthFatalError("no credentials configured")

        self.refresh_count += 1
        if rotated is not None:
            logger.info(f"🔄 Server rotated the token pair ({reason})")
            pair = rotated
        else:
            logger.info(f"🔄 Refreshing access token ({reason})")
            result = await self.gateway.refresh_tokens(creds)
            if not result.ok:
                self._reject(result)
            pair = result.value

        if pair.access_token == creds.access_token and pair.refresh_token in (None, creds.refresh_token):
            self._kept_token = creds.access_token
            logger.debug("Server kept the current token pair")
            return

        updated = creds.with_tokens(pair.access_token, pair.refresh_token)
        self.credentials.replace(updated)

        if self.token_store:
            try:
                self.token_store.save(updated)
            except OSError as e:
                # Tokens are valid in memory; persisting is best effort
                logger.error(f"Could not persist refreshed tokens: {e}")

        if self.status is not None:
            self.status.info("🔄 Access token refreshed")

    def _reject(self, result: GatewayResult) -> None:
        if result.kind in (ErrorKind.NETWORK_TRANSIENT, ErrorKind.SERVER_ERROR):
            message = f"token refresh failed: {result.describe()}"
        else:
            message = f"refresh token rejected: {result.describe()}"
            if self.token_store:
                # Saved pair is dead; don't offer it again on the next start
                try:
                    self.token_store.clear()
                except OSError as e:
                    logger.error(f"Could not clear saved tokens: {e}")
        self.credentials.mark_reauth_required()
        if self.status is not None:
            self.status.error(f"Re-authentication required — {message}")
        raise AuthFatalError(message)

    # ─── Proactive refresh ─────────────────────

    async def refresh_if_expiring(self) -> bool:
        creds = self.credentials.snapshot()
        if creds is None or not creds.refresh_token or self.credentials.needs_reauth:
            return False
        if creds.access_token == self._kept_token:
            return False
        if not is_expiring(creds.access_token, self.refresh_margin):
            return False
        await self.ensure_fresh("access token about to expire", self.credentials.version)
        return True

    # ─── Authenticated call wrapper ────────────

    async def call(
        self,
        operation: Callable[..., Awaitable[GatewayResult]],
        *args,
    ) -> GatewayResult:
        """
        Run a gateway operation with the current credentials. On AUTH_EXPIRED,
        install the rotated pair (or refresh, single-flight) and re-issue the
        same request exactly once.
        Raises AuthFatalError if the refresh itself fails.
        """
        creds = self.credentials.snapshot()
        if creds is None:
            self.credentials.mark_reauth_required()
            raise AuthFatalError("no credentials configured")

        version = self.credentials.version
        result  = await operation(creds, *args)
        if result.kind != ErrorKind.AUTH_EXPIRED:
            return result

        rotated = result.value if isinstance(result.value, TokenPair) else None
        await self.ensure_fresh(f"{getattr(operation, '__name__', 'request')} got 426", version, rotated)
        return await operation(self.credentials.snapshot(), *args)
