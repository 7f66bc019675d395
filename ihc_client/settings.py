"""Configuration for IHC controller clients."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

KNOWN_APPLICATIONS: frozenset[str] = frozenset({"treeview", "openapi", "administrator"})

DEFAULT_APPLICATION = "openapi"
DEFAULT_REQUEST_TIMEOUT = 30.0


def _normalize_endpoint(endpoint: str) -> str:
    parts = urlsplit(endpoint)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Invalid IHC endpoint: {endpoint!r}")
    return endpoint.rstrip("/")


@dataclass(frozen=True)
class TransportConfig:
    """Settings bound to a transport channel.

    Attributes:
        endpoint: Controller base address, e.g. "http://192.168.1.3"
        request_timeout: Total timeout for one SOAP call (seconds)
        log_sensitive_data: Record passwords and cookies in diagnostics
    """

    endpoint: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    log_sensitive_data: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint", _normalize_endpoint(self.endpoint))
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


@dataclass(frozen=True)
class IhcSettings:
    """Endpoint, credentials and application role for one controller login.

    Known application names are "treeview", "openapi" and "administrator".
    """

    endpoint: str
    username: str
    password: str = field(default="", repr=False)
    application: str = DEFAULT_APPLICATION
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    log_sensitive_data: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint", _normalize_endpoint(self.endpoint))
        if not self.username:
            raise ValueError("username must not be empty")
        if self.application not in KNOWN_APPLICATIONS:
            raise ValueError(
                f"Unknown IHC application {self.application!r}, "
                f"expected one of {sorted(KNOWN_APPLICATIONS)}"
            )
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

    @property
    def transport_config(self) -> TransportConfig:
        """Transport settings derived from these settings."""
        return TransportConfig(
            endpoint=self.endpoint,
            request_timeout=self.request_timeout,
            log_sensitive_data=self.log_sensitive_data,
        )

    @classmethod
    def from_env(
        cls,
        prefix: str = "IHC_",
        environ: Mapping[str, str] | None = None,
        **overrides: str | float | bool | None,
    ) -> IhcSettings:
        """Build settings from environment variables.

        Reads ENDPOINT, USERNAME, PASSWORD, APPLICATION, REQUEST_TIMEOUT and
        LOG_SENSITIVE_DATA under the given prefix. Keyword overrides that are
        not None take precedence.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {
            "endpoint": env.get(f"{prefix}ENDPOINT", ""),
            "username": env.get(f"{prefix}USERNAME", ""),
            "password": env.get(f"{prefix}PASSWORD", ""),
            "application": env.get(f"{prefix}APPLICATION", DEFAULT_APPLICATION),
        }
        if f"{prefix}REQUEST_TIMEOUT" in env:
            values["request_timeout"] = float(env[f"{prefix}REQUEST_TIMEOUT"])
        if f"{prefix}LOG_SENSITIVE_DATA" in env:
            values["log_sensitive_data"] = env[f"{prefix}LOG_SENSITIVE_DATA"].lower() in (
                "1",
                "true",
                "yes",
            )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)  # type: ignore[arg-type]
