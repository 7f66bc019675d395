"""Session manager for IHC controller authentication.

One IhcSession owns the login state for one identity (endpoint, credentials
and application). The session cookie and the connected flag are only ever
read or written together under a single lock, so concurrent authenticate and
disconnect calls can never expose a half-updated state.

Usage:
    settings = IhcSettings(endpoint="http://192.168.1.3", username="admin", password="...")
    async with IhcSession(settings) as session:
        await session.authenticate()
        ...
"""

from __future__ import annotations

import asyncio
import logging
import threading

from .errors import (
    ErrorCode,
    IhcAuthenticationError,
    IhcClientError,
    IhcNotAuthenticatedError,
)
from .http import IhcTransport, SoapResponse, get_shared_transport
from .models import IhcUser, SessionState
from .protocol import (
    AUTHENTICATION_SERVICE,
    AuthenticateResponse,
    build_authenticate,
    build_envelope,
    parse_authenticate,
    parse_bool_result,
)
from .settings import IhcSettings

_LOGGER = logging.getLogger(__name__)

DEFAULT_CLOSE_TIMEOUT = 5.0


class IhcSession:
    """Authentication state and gated call access for one controller login."""

    def __init__(
        self,
        settings: IhcSettings,
        *,
        transport: IhcTransport | None = None,
    ) -> None:
        """Initialize session.

        Args:
            settings: Endpoint, credentials and application role
            transport: Transport to use. Defaults to the process-wide shared
                transport, which this session never closes.
        """
        self.settings = settings
        self._transport = transport or get_shared_transport(settings.transport_config)
        if self._transport.endpoint != settings.endpoint:
            _LOGGER.warning(
                "[%s] Session uses a transport bound to %s",
                settings.endpoint,
                self._transport.endpoint,
            )

        # Guards _cookie, _connected and _user; never held across an await.
        self._lock = threading.Lock()
        self._cookie: str | None = None
        self._connected = False
        self._user: IhcUser | None = None

    # -------------------------------------------------------------------------
    # Public API: State
    # -------------------------------------------------------------------------

    @property
    def transport(self) -> IhcTransport:
        return self._transport

    @property
    def is_authenticated(self) -> bool:
        """Check if the session holds a live login. Never performs I/O."""
        with self._lock:
            return self._connected

    @property
    def cookie(self) -> str | None:
        with self._lock:
            return self._cookie

    @property
    def state(self) -> SessionState:
        """Consistent snapshot of the authentication state."""
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> SessionState:
        return SessionState(
            endpoint=self.settings.endpoint,
            username=self.settings.username,
            application=self.settings.application,
            connected=self._connected,
            cookie=self._cookie,
            user=self._user,
        )

    def _set_connected(self, cookie: str, user: IhcUser) -> SessionState:
        with self._lock:
            replaced = self._cookie is not None
            self._cookie = cookie
            self._connected = True
            self._user = user
            state = self._snapshot_locked()
        if self.settings.log_sensitive_data:
            _LOGGER.debug("[%s] Session cookie set to %r", self.settings.endpoint, cookie)
        elif replaced:
            _LOGGER.debug("[%s] Session cookie replaced", self.settings.endpoint)
        return state

    def _clear(self, cookie: str | None = None) -> None:
        """Drop the login state.

        With a cookie, only the login holding that cookie is dropped; a newer
        login stored meanwhile is kept.
        """
        with self._lock:
            if cookie is not None and self._cookie != cookie:
                return
            was_connected = self._connected
            self._cookie = None
            self._connected = False
            self._user = None
        if was_connected:
            _LOGGER.debug("[%s] State: connected → disconnected", self.settings.endpoint)

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def authenticate(self) -> SessionState:
        """Log in with the stored credentials and application role.

        Re-authenticating an already connected session replaces its cookie.

        Returns:
            Snapshot of the connected session state

        Raises:
            IhcAuthenticationError: If the controller rejects the login
            IhcTransportError: If the login call itself fails
        """
        settings = self.settings
        _LOGGER.info(
            "[%s] Authenticating as %s (%s)",
            settings.endpoint,
            settings.username,
            settings.application,
        )
        body = build_authenticate(settings.username, settings.password, settings.application)
        try:
            response = await self._transport.send(AUTHENTICATION_SERVICE, "authenticate", body)
            result = parse_authenticate(response.payload)
        except IhcClientError:
            self._clear()
            raise

        if not result.login_was_successful:
            self._clear()
            raise self._login_error(result)

        if result.user is None or not response.cookie:
            self._clear()
            missing = "user data" if result.user is None else "a session cookie"
            raise IhcAuthenticationError(
                ErrorCode.LOGIN_UNKNOWN_ERROR,
                f"Login to {settings.endpoint} succeeded but returned no {missing}",
            )

        state = self._set_connected(response.cookie, result.user)
        _LOGGER.info("[%s] Authenticated user %s", settings.endpoint, result.user.username)
        return state

    def _login_error(self, result: AuthenticateResponse) -> IhcAuthenticationError:
        endpoint = self.settings.endpoint
        if result.account_invalid:
            return IhcAuthenticationError(
                ErrorCode.LOGIN_FAILED_DUE_TO_ACCOUNT_INVALID,
                f"Login to {endpoint} failed: invalid account",
            )
        if result.connection_restricted:
            return IhcAuthenticationError(
                ErrorCode.LOGIN_FAILED_DUE_TO_CONNECTION_RESTRICTIONS,
                f"Login to {endpoint} failed: connection restrictions",
            )
        if result.insufficient_user_rights:
            return IhcAuthenticationError(
                ErrorCode.LOGIN_FAILED_DUE_TO_INSUFFICIENT_USER_RIGHTS,
                f"Login to {endpoint} failed: insufficient user rights",
            )
        return IhcAuthenticationError(
            ErrorCode.LOGIN_UNKNOWN_ERROR, f"Login to {endpoint} failed"
        )

    async def disconnect(self) -> bool:
        """Log out and clear the session cookie.

        Local state is cleared even if the logout call fails. A login that
        completes while the logout is in flight is kept.

        Returns:
            True if the controller confirmed the logout, False otherwise
        """
        with self._lock:
            connected = self._connected
            cookie = self._cookie
        if not connected:
            return False

        _LOGGER.info("[%s] Disconnecting", self.settings.endpoint)
        try:
            response = await self._transport.send(
                AUTHENTICATION_SERVICE, "disconnect", build_envelope(), cookie=cookie
            )
        finally:
            self._clear(cookie)
        if response.payload is None:
            return False
        return parse_bool_result(response.payload, "disconnect1")

    def invalidate(self) -> None:
        """Mark the session disconnected without calling the controller.

        For callers that observed a fatal remote error, such as a controller
        restart, that ended the login on the remote side.
        """
        _LOGGER.info("[%s] Session invalidated", self.settings.endpoint)
        self._clear()

    async def ping(self) -> bool:
        """Check if the controller is up and serving API calls."""
        response = await self.call(
            AUTHENTICATION_SERVICE, "ping", build_envelope(), require_auth=False
        )
        if response.payload is None:
            return False
        return parse_bool_result(response.payload, "ping1")

    async def close(self, timeout: float = DEFAULT_CLOSE_TIMEOUT) -> None:
        """Log out within a bounded time.

        When this returns, no logout call is in flight and the session is
        marked disconnected, whether or not the controller confirmed.
        The transport is left open.
        """
        if not self.is_authenticated:
            return
        try:
            await asyncio.wait_for(self.disconnect(), timeout=timeout)
        except TimeoutError:
            _LOGGER.warning(
                "[%s] Logout timed out after %.1fs; session abandoned",
                self.settings.endpoint,
                timeout,
            )
        except IhcClientError as err:
            _LOGGER.warning("[%s] Logout failed: %s", self.settings.endpoint, err)
        finally:
            self._clear()

    async def __aenter__(self) -> IhcSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Public API: Calls
    # -------------------------------------------------------------------------

    async def call(
        self,
        service: str,
        action: str,
        body: str,
        *,
        require_auth: bool = True,
    ) -> SoapResponse:
        """Send one SOAP call carrying this session's cookie.

        Raises:
            IhcNotAuthenticatedError: If require_auth is set and the session
                is not connected. No request is made in that case.
        """
        with self._lock:
            connected = self._connected
            cookie = self._cookie
        if require_auth and not connected:
            raise IhcNotAuthenticatedError(
                f"{service}.{action} requires an authenticated session"
            )
        return await self._transport.send(service, action, body, cookie=cookie)
