"""Async client for the IHC home-automation controller SOAP API."""

__version__ = "0.1.0"

from .diagnostics import (
    CallbackSink,
    CallRecord,
    DiagnosticSink,
    LoggingSink,
    MemorySink,
    NullSink,
)
from .errors import (
    ErrorCode,
    IhcAuthenticationError,
    IhcClientError,
    IhcConnectionError,
    IhcMalformedResponseError,
    IhcNotAuthenticatedError,
    IhcResponseError,
    IhcSubscriptionTeardownError,
    IhcTimeout,
    IhcTransportError,
)
from .http import IhcTransport, SoapResponse, get_shared_transport, reset_shared_transport
from .models import (
    DatalineResource,
    EnumDefinition,
    EnumValue,
    IhcUser,
    ResourceValue,
    SessionState,
    TypeString,
    ValueChangeEvent,
    ValueKind,
    WaitResult,
)
from .resources import ResourceInteractionService
from .session import IhcSession
from .settings import IhcSettings, TransportConfig
from .subscription import Subscription, ValueChangeStream

__all__ = [
    "CallRecord",
    "CallbackSink",
    "DatalineResource",
    "DiagnosticSink",
    "EnumDefinition",
    "EnumValue",
    "ErrorCode",
    "IhcAuthenticationError",
    "IhcClientError",
    "IhcConnectionError",
    "IhcMalformedResponseError",
    "IhcNotAuthenticatedError",
    "IhcResponseError",
    "IhcSession",
    "IhcSettings",
    "IhcSubscriptionTeardownError",
    "IhcTimeout",
    "IhcTransport",
    "IhcTransportError",
    "IhcUser",
    "LoggingSink",
    "MemorySink",
    "NullSink",
    "ResourceInteractionService",
    "ResourceValue",
    "SessionState",
    "SoapResponse",
    "Subscription",
    "TransportConfig",
    "TypeString",
    "ValueChangeEvent",
    "ValueChangeStream",
    "ValueKind",
    "WaitResult",
    "__version__",
    "get_shared_transport",
    "reset_shared_transport",
]
