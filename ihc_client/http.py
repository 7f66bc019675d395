"""HTTP transport channel for IHC SOAP services."""

from __future__ import annotations

import logging
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass

import aiohttp

from .diagnostics import CallRecord, DiagnosticSink, LoggingSink, safe_record
from .errors import (
    ErrorCode,
    IhcClientError,
    IhcConnectionError,
    IhcMalformedResponseError,
    IhcResponseError,
    IhcTimeout,
)
from .protocol import parse_envelope, parse_fault, redact_passwords
from .settings import TransportConfig

_LOGGER = logging.getLogger(__name__)

USER_AGENT = "ihc-client"


@dataclass(frozen=True)
class SoapResponse:
    """Decoded response of one SOAP call."""

    status: int
    payload: ET.Element | None
    cookie: str | None = None


def _session_cookie(response: aiohttp.ClientResponse) -> str | None:
    cookies = response.cookies
    if not cookies:
        return None
    return "; ".join(f"{morsel.key}={morsel.value}" for morsel in cookies.values())


class IhcTransport:
    """Connection-reusing SOAP channel to one IHC controller.

    All services and sessions may share one transport. Cookies are never
    stored by the underlying aiohttp session; each caller passes its own
    session cookie with every call.
    """

    def __init__(
        self,
        config: TransportConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        sink: DiagnosticSink | None = None,
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._sink = sink or LoggingSink()

    @property
    def config(self) -> TransportConfig:
        return self._config

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    def service_url(self, service: str) -> str:
        return f"{self._config.endpoint}/ws/{service}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # Controllers ship self-signed certificates.
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=False),
                cookie_jar=aiohttp.DummyCookieJar(),
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_session = True
        return self._session

    async def send(
        self,
        service: str,
        action: str,
        body: str,
        *,
        cookie: str | None = None,
    ) -> SoapResponse:
        """Post one SOAP request and decode the response envelope.

        Raises:
            IhcTimeout: If the call exceeds the configured timeout
            IhcConnectionError: If the network request fails
            IhcResponseError: If the controller answers with a non-200 status
            IhcMalformedResponseError: If the response is not a SOAP envelope
        """
        url = self.service_url(service)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": action,
        }
        if cookie:
            headers["Cookie"] = cookie

        started = time.monotonic()
        status: int | None = None
        text: str | None = None
        error: str | None = None
        try:
            try:
                async with self._get_session().post(
                    url,
                    data=body.encode("utf-8"),
                    headers=headers,
                    allow_redirects=False,
                    timeout=aiohttp.ClientTimeout(total=self._config.request_timeout),
                ) as resp:
                    status = resp.status
                    text = await resp.text()
                    set_cookie = _session_cookie(resp)
            except TimeoutError as err:
                raise IhcTimeout(f"{service}.{action} request timed out") from err
            except aiohttp.ClientError as err:
                raise IhcConnectionError(f"{service}.{action} request failed: {err}") from err
            except UnicodeDecodeError as err:
                raise IhcMalformedResponseError(
                    f"{service}.{action} response is not valid text: {err.reason}",
                    code=ErrorCode.XML_FORMAT_ERROR,
                ) from err

            if status != 200:
                fault = parse_fault(text) if text else None
                message = f"{service}.{action} failed with HTTP {status}"
                if fault:
                    message = f"{message}: {fault}"
                raise IhcResponseError(status, message, fault=fault)

            return SoapResponse(status=status, payload=parse_envelope(text), cookie=set_cookie)
        except IhcClientError as err:
            error = f"{type(err).__name__}: {err}"
            raise
        finally:
            sensitive = self._config.log_sensitive_data
            safe_record(
                self._sink,
                CallRecord(
                    service=service,
                    action=action,
                    url=url,
                    status=status,
                    duration=time.monotonic() - started,
                    request_body=body if sensitive else redact_passwords(body),
                    response_body=text if sensitive else redact_passwords(text),
                    error=error,
                    had_cookie=cookie is not None,
                ),
            )

    async def close(self) -> None:
        """Close the underlying HTTP session if this transport created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


_shared_lock = threading.Lock()
_shared_transport: IhcTransport | None = None


def get_shared_transport(
    config: TransportConfig, *, sink: DiagnosticSink | None = None
) -> IhcTransport:
    """Return the process-wide transport, creating it on first use.

    The first caller's configuration is bound to the shared transport.
    Later callers get the same instance even if their configuration
    differs; a warning is logged but nothing is rejected.
    """
    global _shared_transport
    with _shared_lock:
        if _shared_transport is None:
            _LOGGER.debug("Creating shared IHC transport for %s", config.endpoint)
            _shared_transport = IhcTransport(config, sink=sink)
        elif _shared_transport.config != config:
            _LOGGER.warning(
                "Shared IHC transport is bound to %s; configuration for %s is ignored",
                _shared_transport.endpoint,
                config.endpoint,
            )
        return _shared_transport


async def reset_shared_transport() -> None:
    """Close and forget the process-wide transport."""
    global _shared_transport
    with _shared_lock:
        transport = _shared_transport
        _shared_transport = None
    if transport is not None:
        await transport.close()
