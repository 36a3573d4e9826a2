"""
ftplace — gateway.py
─────────────────────────────────────────────────────────────────
PlacementGateway — the canvas server's HTTP API.

Endpoints:
  GET  /api/get       → board + palette
  GET  /api/profile   → userInfos (pixel buffer, timers)
  POST /api/set       → place one pixel {"x", "y", "color"}

Auth is cookie based (token=...; refresh=...). When the access
token expires the server answers 426 and usually rotates the pair
in that same response's Set-Cookie. We report it as AUTH_EXPIRED
with the new TokenPair (if any) as `value`, and the
TokenRefreshCoordinator installs it.

Nothing here raises for HTTP/network trouble: every call returns a
GatewayResult whose `kind` the worker's state machine switches on.
─────────────────────────────────────────────────────────────────
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

import httpx

from ftplace.cooldown import ChargeInfo
from ftplace.core.config import cfg
from ftplace.credentials import CredentialState
from ftplace.models.board import BoardSnapshot

logger = logging.getLogger("ftplace.gateway")

HTTP_ENHANCE_YOUR_CALM = 420   # event not running
HTTP_TOO_EARLY         = 425   # no pixel in the buffer
HTTP_UPGRADE_REQUIRED  = 426   # access token expired


# ─────────────────────────────────────────────
# Result types
# ─────────────────────────────────────────────
class ErrorKind(str, Enum):
    OK                = "ok"
    NETWORK_TRANSIENT = "network_transient"
    AUTH_EXPIRED      = "auth_expired"
    AUTH_FATAL        = "auth_fatal"
    RATE_LIMITED      = "rate_limited"
    EVENT_CLOSED      = "event_closed"
    CLIENT_REJECTED   = "client_rejected"
    SERVER_ERROR      = "server_error"


RETRYABLE_KINDS = (
    ErrorKind.NETWORK_TRANSIENT,
    ErrorKind.SERVER_ERROR,
    ErrorKind.AUTH_EXPIRED,
)
WAIT_KINDS = (ErrorKind.RATE_LIMITED, ErrorKind.EVENT_CLOSED)


@dataclass(frozen=True)
class ProfileInfo:
    username:    Optional[str]
    charges:     ChargeInfo
    pixel_timer: Optional[int] = None


@dataclass(frozen=True)
class TokenPair:
    access_token:  str
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class GatewayResult:
    kind:        ErrorKind
    value:       Any = None
    charges:     Optional[ChargeInfo] = None
    status_code: Optional[int] = None
    message:     str = ""

    @property
    def ok(self) -> bool:
        return self.kind == ErrorKind.OK

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def describe(self) -> str:
        code = f" [{self.status_code}]" if self.status_code else ""
        return f"{self.kind.value}{code}: {self.message}" if self.message else f"{self.kind.value}{code}"


# ─────────────────────────────────────────────
# Payload decoding
# ─────────────────────────────────────────────
def parse_charges(
    timers: Optional[List[int]],
    pixel_buffer: Optional[int] = None,
    now: Optional[float] = None,
) -> ChargeInfo:
    """
    `timers` are epoch-millisecond timestamps, one per pixel currently
    recharging. Available charges = buffer size - running timers.
    """
    now_ms  = (time.time() if now is None else now) * 1000
    running = sorted(t for t in (timers or []) if t > now_ms)
    next_at = running[0] / 1000 if running else None

    if pixel_buffer is None:
        # Error bodies carry timers only: the server just told us "not now"
        return ChargeInfo(charges_available=0, next_charge_at=next_at)

    return ChargeInfo(
        charges_available = max(0, int(pixel_buffer) - len(running)),
        max_charges       = int(pixel_buffer),
        next_charge_at    = next_at,
    )


def _charges_from_user_infos(infos: dict) -> Optional[ChargeInfo]:
    if not isinstance(infos, dict) or "pixel_buffer" not in infos:
        return None
    return parse_charges(infos.get("timers"), infos.get("pixel_buffer"))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body)[:200]
    return str(body)[:200]


def _classify_status(status: int) -> ErrorKind:
    if status == HTTP_UPGRADE_REQUIRED:
        return ErrorKind.AUTH_EXPIRED
    if status in (401, 403):
        return ErrorKind.AUTH_FATAL
    if status in (HTTP_TOO_EARLY, 429):
        return ErrorKind.RATE_LIMITED
    if status == HTTP_ENHANCE_YOUR_CALM:
        return ErrorKind.EVENT_CLOSED
    if 400 <= status < 500:
        return ErrorKind.CLIENT_REJECTED
    return ErrorKind.SERVER_ERROR


def _cookies_from_headers(response: httpx.Response) -> dict:
    """Pull token=/refresh= out of Set-Cookie headers."""
    found = {}
    for header in response.headers.get_list("set-cookie"):
        first = header.split(";", 1)[0].strip()
        name, _, value = first.partition("=")
        if name in ("token", "refresh") and value:
            found[name] = value
    return found


def _token_pair_from_headers(response: httpx.Response) -> Optional[TokenPair]:
    cookies = _cookies_from_headers(response)
    if not cookies.get("token"):
        return None
    return TokenPair(access_token=cookies["token"], refresh_token=cookies.get("refresh"))


# ─────────────────────────────────────────────
# Gateway
# ─────────────────────────────────────────────
class PlacementGateway:

    def __init__(
        self,
        timeout: float = cfg.REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout    = timeout
        self._transport = transport

    def _client(self, creds: CredentialState) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url  = creds.base_url,
            timeout   = self.timeout,
            transport = self._transport,
        )

    async def _request(
        self,
        creds: CredentialState,
        method: str,
        path: str,
        include_refresh: bool = True,
        **kwargs,
    ):
        """Returns (response, None) or (None, GatewayResult) on transport failure."""
        headers = {
            "Accept": "application/json",
            "Cookie": creds.cookie_header(include_refresh=include_refresh),
        }
        try:
            async with self._client(creds) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            return None, GatewayResult(ErrorKind.NETWORK_TRANSIENT, message=f"timeout: {e}")
        except httpx.TransportError as e:
            return None, GatewayResult(ErrorKind.NETWORK_TRANSIENT, message=str(e) or type(e).__name__)

        logger.debug(f"{method} {path} → {response.status_code}")
        return response, None

    def _failure(self, response: httpx.Response) -> GatewayResult:
        kind    = _classify_status(response.status_code)
        charges = None
        rotated = None
        if kind == ErrorKind.AUTH_EXPIRED:
            rotated = _token_pair_from_headers(response)
        elif kind in WAIT_KINDS:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if isinstance(body, dict) and body.get("timers") is not None:
                charges = parse_charges(body.get("timers"))
        return GatewayResult(
            kind        = kind,
            value       = rotated,
            charges     = charges,
            status_code = response.status_code,
            message     = _error_message(response),
        )

    @staticmethod
    def _json(response: httpx.Response):
        try:
            return response.json(), None
        except ValueError:
            return None, GatewayResult(
                ErrorKind.SERVER_ERROR,
                status_code = response.status_code,
                message     = "unparseable response body",
            )

    # ─── Board ─────────────────────────────────

    async def get_board(self, creds: CredentialState) -> GatewayResult:
        response, error = await self._request(creds, "GET", "/api/get")
        if error:
            return error
        if not response.is_success:
            return self._failure(response)

        data, error = self._json(response)
        if error:
            return error
        try:
            board = BoardSnapshot.from_api(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            return GatewayResult(ErrorKind.SERVER_ERROR, status_code=response.status_code,
                                 message=f"malformed board payload: {e}")
        return GatewayResult(ErrorKind.OK, value=board, status_code=response.status_code)

    # ─── Profile ───────────────────────────────

    async def get_profile(self, creds: CredentialState) -> GatewayResult:
        response, error = await self._request(creds, "GET", "/api/profile")
        if error:
            return error
        if not response.is_success:
            return self._failure(response)

        data, error = self._json(response)
        if error:
            return error
        infos   = (data or {}).get("userInfos") or {}
        charges = _charges_from_user_infos(infos)
        if charges is None:
            return GatewayResult(ErrorKind.SERVER_ERROR, status_code=response.status_code,
                                 message="profile without pixel_buffer")

        profile = ProfileInfo(
            username    = infos.get("username"),
            charges     = charges,
            pixel_timer = infos.get("pixel_timer"),
        )
        return GatewayResult(ErrorKind.OK, value=profile, charges=charges,
                             status_code=response.status_code)

    # ─── Placement ─────────────────────────────

    async def place_pixel(self, creds: CredentialState, x: int, y: int, color: int) -> GatewayResult:
        response, error = await self._request(
            creds, "POST", "/api/set", json={"x": x, "y": y, "color": color},
        )
        if error:
            return error
        if not response.is_success:
            return self._failure(response)

        data, error = self._json(response)
        if error:
            return error
        charges = _charges_from_user_infos((data or {}).get("userInfos") or {})
        return GatewayResult(ErrorKind.OK, value=(x, y, color), charges=charges,
                             status_code=response.status_code)

    # ─── Token refresh exchange ────────────────

    async def refresh_tokens(self, creds: CredentialState) -> GatewayResult:
        """
        Present the refresh cookie to /api/profile. The server rotates the
        pair and sends it back in Set-Cookie (with a 426 or a 200).
        """
        if not creds.refresh_token:
            return GatewayResult(ErrorKind.AUTH_FATAL, message="no refresh token")

        response, error = await self._request(creds, "GET", "/api/profile")
        if error:
            return error

        pair = _token_pair_from_headers(response)
        if pair is not None:
            return GatewayResult(ErrorKind.OK, value=pair, status_code=response.status_code)

        if response.is_success:
            # Server accepted the current pair as-is
            return GatewayResult(
                ErrorKind.OK,
                value       = TokenPair(creds.access_token, creds.refresh_token),
                status_code = response.status_code,
            )

        kind = ErrorKind.AUTH_FATAL if response.status_code in (401, 403, HTTP_UPGRADE_REQUIRED) \
            else _classify_status(response.status_code)
        return GatewayResult(kind, status_code=response.status_code,
                             message=_error_message(response) or "refresh rejected")
