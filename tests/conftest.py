"""Pytest configuration and fixtures for ihc_client tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from http.cookies import SimpleCookie
from unittest.mock import AsyncMock, MagicMock

import pytest

from ihc_client import IhcSession, IhcSettings, IhcTransport, reset_shared_transport
from ihc_client.http import SoapResponse
from ihc_client.protocol import parse_envelope

ENDPOINT = "http://192.168.1.3"

SOAP_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    'xmlns:ns1="utcs" xmlns:ns2="utcs.values">'
    "<SOAP-ENV:Body>"
)
SOAP_FOOTER = "</SOAP-ENV:Body></SOAP-ENV:Envelope>"


def soap(inner: str = "") -> str:
    """Wrap a body payload in a controller-style SOAP envelope."""
    return f"{SOAP_HEADER}{inner}{SOAP_FOOTER}"


def auth_response(
    *,
    success: bool = True,
    account_invalid: bool = False,
    restricted: bool = False,
    insufficient_rights: bool = False,
    username: str = "admin",
    password: str | None = None,
) -> str:
    def flag(value: bool) -> str:
        return "true" if value else "false"

    user = ""
    if success:
        secret = f"<ns1:password>{password}</ns1:password>" if password else ""
        user = (
            "<ns1:loggedInUser>"
            f"<ns1:username>{username}</ns1:username>"
            f"{secret}"
            "<ns1:firstname>Ada</ns1:firstname>"
            "<ns1:lastname>Admin</ns1:lastname>"
            "<ns1:group><ns1:type>text.usermanager.group_administrators</ns1:type></ns1:group>"
            "<ns1:createdDate><ns1:day>2</ns1:day><ns1:monthWithJanuaryAsOne>3</ns1:monthWithJanuaryAsOne>"
            "<ns1:hours>4</ns1:hours><ns1:minutes>5</ns1:minutes><ns1:seconds>6</ns1:seconds>"
            "<ns1:year>2020</ns1:year></ns1:createdDate>"
            "</ns1:loggedInUser>"
        )
    return soap(
        "<ns1:authenticate2>"
        f"<ns1:loginWasSuccessful>{flag(success)}</ns1:loginWasSuccessful>"
        f"<ns1:loginFailedDueToConnectionRestrictions>{flag(restricted)}"
        "</ns1:loginFailedDueToConnectionRestrictions>"
        f"<ns1:loginFailedDueToInsufficientUserRights>{flag(insufficient_rights)}"
        "</ns1:loginFailedDueToInsufficientUserRights>"
        f"<ns1:loginFailedDueToAccountInvalid>{flag(account_invalid)}"
        "</ns1:loginFailedDueToAccountInvalid>"
        f"{user}"
        "</ns1:authenticate2>"
    )


def bool_response(name: str, value: bool = True) -> str:
    return soap(f"<ns1:{name}>{'true' if value else 'false'}</ns1:{name}>")


def resource_value(
    resource_id: int,
    ws_type: str = "WSBooleanValue",
    inner: str = "<ns2:value>true</ns2:value>",
    *,
    runtime: bool = True,
    tag: str = "ns1:arrayItem",
) -> str:
    return (
        f'<{tag} xsi:type="ns1:WSResourceValueEnvelope">'
        f'<ns1:value xsi:type="ns2:{ws_type}">{inner}</ns1:value>'
        "<ns1:typeString/>"
        f"<ns1:resourceID>{resource_id}</ns1:resourceID>"
        f"<ns1:isValueRuntime>{'true' if runtime else 'false'}</ns1:isValueRuntime>"
        f"</{tag}>"
    )


def wait_response(*items: str) -> str:
    return soap(
        "<ns1:waitForResourceValueChanges2>"
        + "".join(items)
        + "</ns1:waitForResourceValueChanges2>"
    )


def wait_timed_out() -> str:
    return soap(
        "<ns1:waitForResourceValueChanges2>"
        '<ns1:arrayItem xsi:nil="true"/>'
        "</ns1:waitForResourceValueChanges2>"
    )


def soap_response(text: str, *, cookie: str | None = None, status: int = 200) -> SoapResponse:
    """Decoded transport response, for tests that mock IhcTransport.send."""
    return SoapResponse(status=status, payload=parse_envelope(text), cookie=cookie)


def create_mock_response(
    status: int = 200,
    text_data: str | None = None,
    cookies: str | None = None,
) -> AsyncMock:
    """Create a configured mock aiohttp response.

    Args:
        status: HTTP status code
        text_data: Data to return from text() call
        cookies: Set-Cookie header value, e.g. "JSESSIONID=abc; Path=/"

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.text.return_value = text_data if text_data is not None else ""
    response.cookies = SimpleCookie(cookies or "")

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


@pytest.fixture(autouse=True)
async def _reset_shared_transport() -> AsyncIterator[None]:
    """Forget the process-wide transport between tests."""
    await reset_shared_transport()
    yield
    await reset_shared_transport()


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    session = MagicMock(spec=aiohttp.ClientSession)
    session.closed = False
    return session


@pytest.fixture
def settings() -> IhcSettings:
    return IhcSettings(
        endpoint=ENDPOINT,
        username="admin",
        password="secret",
        application="administrator",
    )


@pytest.fixture
def mock_transport(settings: IhcSettings) -> MagicMock:
    """Create a mock transport whose send() is an AsyncMock."""
    transport = MagicMock(spec=IhcTransport)
    transport.endpoint = settings.endpoint
    transport.config = settings.transport_config
    transport.send = AsyncMock()
    return transport


@pytest.fixture
def ihc_session(settings: IhcSettings, mock_transport: MagicMock) -> IhcSession:
    return IhcSession(settings, transport=mock_transport)


@pytest.fixture
async def connected_session(ihc_session: IhcSession, mock_transport: MagicMock) -> IhcSession:
    """A session that has authenticated with cookie JSESSIONID=abc."""
    mock_transport.send.return_value = soap_response(auth_response(), cookie="JSESSIONID=abc")
    await ihc_session.authenticate()
    mock_transport.send.reset_mock(return_value=True)
    return ihc_session
