"""Client error types for IHC controller interactions."""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Numeric error codes reported by the IHC client."""

    XML_FORMAT_ERROR = 1000
    XML_LOOKUP_ERROR = 1001
    XML_SERIALIZE_ERROR = 1002
    XML_DESERIALIZE_ERROR = 1003
    HTTP_CLIENT_SIDE_INTERNAL_ERROR = 1004
    HTTP_UNEXPECTED_CONTENT_ERROR = 1005
    LOGIN_FAILED_DUE_TO_CONNECTION_RESTRICTIONS = 1006
    LOGIN_FAILED_DUE_TO_INSUFFICIENT_USER_RIGHTS = 1007
    LOGIN_FAILED_DUE_TO_ACCOUNT_INVALID = 1008
    LOGIN_UNKNOWN_ERROR = 1009
    FEATURE_NOT_IMPLEMENTED = 1010
    WEB_EXCEPTION_ERROR_BASE = 10000


class IhcClientError(Exception):
    """Base error for IHC client failures."""


class IhcTransportError(IhcClientError):
    """Failure while exchanging a SOAP call with the controller."""


class IhcTimeout(IhcTransportError):
    """Timeout while communicating with the controller."""


class IhcConnectionError(IhcTransportError):
    """Network connection to the controller failed."""


class IhcResponseError(IhcTransportError):
    """HTTP response error from the controller."""

    def __init__(self, status: int, message: str, *, fault: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.fault = fault


class IhcMalformedResponseError(IhcTransportError):
    """Controller response could not be parsed."""

    def __init__(
        self, message: str, *, code: ErrorCode = ErrorCode.XML_DESERIALIZE_ERROR
    ) -> None:
        super().__init__(message)
        self.code = code


class IhcAuthenticationError(IhcClientError):
    """Controller rejected the login."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


class IhcNotAuthenticatedError(IhcClientError):
    """Operation requires an authenticated session."""


class IhcSubscriptionTeardownError(IhcClientError):
    """Disabling value notifications for a subscription failed."""

    def __init__(self, resource_ids: tuple[int, ...], message: str) -> None:
        super().__init__(message)
        self.resource_ids = resource_ids
