"""Data model for IHC resources, sessions and value changes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time
from enum import Enum


class TypeString:
    """Known resource type strings."""

    DATALINE_INPUT = "dataline_input"
    DATALINE_OUTPUT = "dataline_output"


class ValueKind(Enum):
    """Kind of value held by a resource."""

    BOOL = "bool"
    INT = "int"
    DOUBLE = "double"
    ENUM = "enum"
    DATE = "date"
    TIME = "time"
    TIMER = "timer"
    WEEKDAY = "weekday"


@dataclass(frozen=True)
class EnumValue:
    """One value of an enumerator definition."""

    definition_type_id: int
    enum_value_id: int
    enum_name: str | None = None


@dataclass(frozen=True)
class EnumDefinition:
    """An enumerator definition and its values, in controller order."""

    enumerator_definition_id: int
    values: tuple[EnumValue, ...] = ()

    def name_of(self, enum_value_id: int) -> str | None:
        """Return the name of a value of this definition, if known."""
        for value in self.values:
            if value.enum_value_id == enum_value_id:
                return value.enum_name
        return None


@dataclass(frozen=True)
class DatalineResource:
    """A dataline input or output and the resource bound to it."""

    resource_id: int
    dataline_number: int


# TIMER values are milliseconds, WEEKDAY values the weekday number.
Value = bool | int | float | EnumValue | date | time


@dataclass(frozen=True)
class ResourceValue:
    """Typed value of one controller resource."""

    resource_id: int
    kind: ValueKind
    value: Value
    is_value_runtime: bool = True
    type_string: str | None = None

    @classmethod
    def boolean_input(cls, resource_id: int, value: bool) -> ResourceValue:
        """Create a runtime value for a boolean dataline input."""
        return cls(
            resource_id=resource_id,
            kind=ValueKind.BOOL,
            value=value,
            type_string=TypeString.DATALINE_INPUT,
        )

    @classmethod
    def boolean_output(cls, resource_id: int, value: bool) -> ResourceValue:
        """Create a runtime value for a boolean dataline output."""
        return cls(
            resource_id=resource_id,
            kind=ValueKind.BOOL,
            value=value,
            type_string=TypeString.DATALINE_OUTPUT,
        )

    def toggled(self) -> ResourceValue:
        """Return a copy holding the opposite boolean value."""
        if self.kind is not ValueKind.BOOL:
            raise ValueError("Only boolean resource values can be toggled")
        return replace(self, value=not self.value)


@dataclass(frozen=True)
class ValueChangeEvent:
    """A resource value change delivered by a live subscription.

    The timestamp is assigned when the change is received, not by the
    controller.
    """

    resource_id: int
    kind: ValueKind
    value: Value
    is_value_runtime: bool
    timestamp: datetime
    type_string: str | None = None

    @classmethod
    def from_resource_value(
        cls, value: ResourceValue, *, timestamp: datetime | None = None
    ) -> ValueChangeEvent:
        return cls(
            resource_id=value.resource_id,
            kind=value.kind,
            value=value.value,
            is_value_runtime=value.is_value_runtime,
            timestamp=timestamp or datetime.now(tz=UTC),
            type_string=value.type_string,
        )


@dataclass(frozen=True)
class WaitResult:
    """Outcome of one long-poll wait for value changes."""

    timed_out: bool
    changes: tuple[ResourceValue, ...] = ()


@dataclass(frozen=True)
class IhcUser:
    """User record returned by a successful login."""

    username: str
    firstname: str | None = None
    lastname: str | None = None
    phone: str | None = None
    group: str | None = None
    project: str | None = None
    created_date: datetime | None = None
    login_date: datetime | None = None


@dataclass(frozen=True)
class SessionState:
    """Snapshot of a session's authentication state."""

    endpoint: str
    username: str
    application: str
    connected: bool = False
    cookie: str | None = field(default=None, repr=False)
    user: IhcUser | None = None
