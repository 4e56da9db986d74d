"""
JWT access plugin.

Reads a bearer token from the ``Authorization`` header (or the
``accessToken`` cookie), exposes the decoded user as ``request.state.user``
and installs a session object handlers use to sign users in and out::

    async def login(ctx):
        ctx.response = ctx.session.authorize({"sub": user["_id"], "name": user["name"]})
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

from duck_api.core.errors import ApiError

if TYPE_CHECKING:
    from starlette.requests import HTTPConnection, Request
    from starlette.responses import Response

    from duck_api.runtime.server import PluginContext

logger = logging.getLogger(__name__)

# Security: Allowed algorithms whitelist (blocks "none")
ALLOWED_ALGORITHMS = frozenset(
    {"HS256", "HS384", "HS512", "RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}
)

# Maximum token length to prevent DoS attacks
MAX_TOKEN_LENGTH = 16 * 1024

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$")

_UNSET_COOKIE = object()


class Session:
    """Per-request session helpers exposed as ``ctx.session``."""

    def __init__(self, access: JWTAccess, request: Request):
        self._access = access
        self._request = request
        self.cookie: Any = _UNSET_COOKIE

    @property
    def user(self) -> dict[str, Any] | None:
        return getattr(self._request.state, "user", None)

    def is_valid(self, token: str) -> dict[str, Any] | bool:
        return self._access.is_valid(token)

    def authorize(
        self,
        user_data: dict[str, Any],
        sign_in: bool = True,
        token_sign_options: dict[str, Any] | None = None,
        refresh_token_sign_options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        """
        Issue an access token and a refresh token for ``user_data``.

        With ``sign_in`` the access token is also set as the session cookie
        and the user becomes the current user of this request.
        """
        access_token = self._access.sign(user_data, **(token_sign_options or {}))
        refresh_token = self._access.sign(user_data, **(refresh_token_sign_options or {}))
        if sign_in:
            self.cookie = access_token
            self._request.state.user = self._access.is_valid(access_token) or None
        return {"accessToken": access_token, "refreshToken": refresh_token}

    def destroy(self) -> None:
        """Sign the current user out."""
        self.cookie = None
        self._request.state.user = None

    def apply_cookie(self, response: Response) -> None:
        if self.cookie is _UNSET_COOKIE:
            return
        if self.cookie is None:
            response.delete_cookie(self._access.cookie_name)
        else:
            response.set_cookie(self._access.cookie_name, self.cookie, httponly=True)


class JWTAccess:
    """
    Plugin authenticating requests and websockets with JWT.

    Args:
        private_key: Signing secret (or PEM private key for asymmetric algorithms)
        header_name: Header carrying ``Bearer <token>``
        cookie_name: Cookie carrying the token
        algorithm: Signing algorithm
        expires_in: Token lifetime, in seconds or as a ``timedelta``
        delivery_group: ``(user) -> group | list[str] | None`` used to place
            websocket clients in realtime delivery groups
        public_key: Verification key for asymmetric algorithms
    """

    def __init__(
        self,
        private_key: str,
        header_name: str = "authorization",
        cookie_name: str = "accessToken",
        algorithm: str = "HS256",
        expires_in: int | timedelta = 15 * 60,
        delivery_group: Callable[[dict[str, Any] | None], Any] | None = None,
        public_key: str | None = None,
    ):
        if algorithm not in ALLOWED_ALGORITHMS:
            raise ValueError(f"Algorithm '{algorithm}' is not allowed")
        if not private_key:
            raise ValueError("A private key is required")
        self.private_key = private_key
        self.public_key = public_key
        self.header_name = header_name
        self.cookie_name = cookie_name
        self.algorithm = algorithm
        self.expires_in = (
            expires_in if isinstance(expires_in, timedelta) else timedelta(seconds=expires_in)
        )
        self.delivery_group = delivery_group

    # =========================================================================
    # Tokens
    # =========================================================================

    def sign(self, user_data: dict[str, Any], expires_in: int | timedelta | None = None) -> str:
        """Encode ``user_data`` into a token expiring after ``expires_in``."""
        lifetime = self.expires_in if expires_in is None else expires_in
        if not isinstance(lifetime, timedelta):
            lifetime = timedelta(seconds=lifetime)
        now = datetime.now(UTC)
        claims = {key: value for key, value in user_data.items() if key not in ("exp", "iat")}
        claims.update(iat=now, exp=now + lifetime)
        return jwt.encode(claims, self.private_key, algorithm=self.algorithm)

    def is_valid(self, token: str) -> dict[str, Any] | bool:
        """Return the decoded claims of a valid, unexpired token, ``False`` otherwise."""
        if not token or len(token) > MAX_TOKEN_LENGTH:
            return False
        try:
            return jwt.decode(
                token,
                self.public_key or self.private_key,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            return False

    def token_from(self, connection: HTTPConnection) -> str | None:
        """Bearer token of the header, falling back to the cookie."""
        match = _BEARER_RE.match(connection.headers.get(self.header_name, ""))
        if match:
            return match.group(1).strip()
        return connection.cookies.get(self.cookie_name)

    # =========================================================================
    # Plugin
    # =========================================================================

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        """HTTP middleware: authenticate, install the session, write cookie changes."""
        from duck_api.runtime.exception_handlers import error_response

        session = Session(self, request)
        request.state.session = session
        request.state.user = None

        token = self.token_from(request)
        if token:
            user = self.is_valid(token)
            if not user:
                response = error_response(401, "Invalid token")
                response.delete_cookie(self.cookie_name)
                return response
            request.state.user = user

        response = await call_next(request)
        session.apply_cookie(response)
        return response

    def websocket_group(self, websocket: HTTPConnection) -> Any:
        """
        Delivery group(s) of a websocket client.

        Raises:
            ApiError: 401 when the client presents an invalid token
        """
        token = self.token_from(websocket)
        user = None
        if token:
            user = self.is_valid(token)
            if not user:
                raise ApiError(401, "Invalid token")
        if self.delivery_group is None:
            return None
        return self.delivery_group(user)

    def __call__(self, plugin: PluginContext) -> None:
        from starlette.middleware.base import BaseHTTPMiddleware

        plugin.app.add_middleware(BaseHTTPMiddleware, dispatch=self.dispatch)
        if plugin.hub is not None:
            plugin.hub.group_resolver = self.websocket_group
        logger.info(f"JWT access enabled ({self.algorithm})")
