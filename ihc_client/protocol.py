"""SOAP envelope builders and parsers for the IHC controller API.

Requests are plain SOAP 1.1 envelopes whose body holds one element in the
"utcs" namespace. Resource values use the "utcs.values" namespace and are
discriminated by their xsi:type attribute.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time

from .errors import ErrorCode, IhcMalformedResponseError
from .models import (
    DatalineResource,
    EnumDefinition,
    EnumValue,
    IhcUser,
    ResourceValue,
    ValueKind,
    WaitResult,
)

_LOGGER = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
UTCS_NS = "utcs"
UTCS_VALUES_NS = "utcs.values"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
XSD_NS = "http://www.w3.org/2001/XMLSchema"

# Prefix used for utcs.values in serialized requests; xsi:type values refer to it.
VALUES_PREFIX = "vals"

ET.register_namespace("soapenv", SOAP_ENV_NS)
ET.register_namespace("utcs", UTCS_NS)
ET.register_namespace(VALUES_PREFIX, UTCS_VALUES_NS)
ET.register_namespace("xsi", XSI_NS)
ET.register_namespace("xsd", XSD_NS)

AUTHENTICATION_SERVICE = "AuthenticationService"
RESOURCE_INTERACTION_SERVICE = "ResourceInteractionService"

REDACTED = "**REDACTED**"
_PASSWORD_PATTERN = re.compile(r"(<\w*:?password>)[^<]+(</\w*:?password>)", re.IGNORECASE)

_WS_TYPE_TO_KIND: dict[str, ValueKind] = {
    "WSBooleanValue": ValueKind.BOOL,
    "WSIntegerValue": ValueKind.INT,
    "WSFloatingPointValue": ValueKind.DOUBLE,
    "WSEnumValue": ValueKind.ENUM,
    "WSDateValue": ValueKind.DATE,
    "WSTimeValue": ValueKind.TIME,
    "WSTimerValue": ValueKind.TIMER,
    "WSWeekdayValue": ValueKind.WEEKDAY,
}
_KIND_TO_WS_TYPE = {kind: ws_type for ws_type, kind in _WS_TYPE_TO_KIND.items()}


@dataclass(frozen=True)
class AuthenticateResponse:
    """Decoded authenticate2 payload."""

    login_was_successful: bool
    connection_restricted: bool = False
    insufficient_user_rights: bool = False
    account_invalid: bool = False
    user: IhcUser | None = None


def redact_passwords(text: str | None) -> str | None:
    """Replace the content of any password element with a marker."""
    if text is None:
        return None
    return _PASSWORD_PATTERN.sub(rf"\g<1>{REDACTED}\g<2>", text)


# -----------------------------------------------------------------------------
# Request builders
# -----------------------------------------------------------------------------


def _utcs(tag: str) -> str:
    return f"{{{UTCS_NS}}}{tag}"


def _values(tag: str) -> str:
    return f"{{{UTCS_VALUES_NS}}}{tag}"


def _text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_envelope(payload: ET.Element | None = None) -> str:
    """Wrap a payload element in a SOAP envelope."""
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    if payload is not None:
        body.append(payload)
    return ET.tostring(envelope, encoding="unicode")


def build_authenticate(username: str, password: str, application: str) -> str:
    payload = ET.Element(_utcs("authenticate1"))
    ET.SubElement(payload, _utcs("password")).text = password
    ET.SubElement(payload, _utcs("username")).text = username
    ET.SubElement(payload, _utcs("application")).text = application
    return build_envelope(payload)


def build_scalar(tag: str, value: object) -> str:
    """Build a request whose payload is a single scalar value."""
    payload = ET.Element(_utcs(tag))
    payload.text = _text(value)
    return build_envelope(payload)


def build_int_array(tag: str, values: Iterable[int]) -> str:
    """Build a request whose payload is an array of integers."""
    payload = ET.Element(_utcs(tag))
    for value in values:
        ET.SubElement(payload, f"{{{XSD_NS}}}arrayItem").text = str(int(value))
    return build_envelope(payload)


def _fill_resource_value(envelope: ET.Element, value: ResourceValue) -> None:
    ws_type = _KIND_TO_WS_TYPE[value.kind]
    value_el = ET.SubElement(
        envelope,
        _utcs("value"),
        {f"{{{XSI_NS}}}type": f"{VALUES_PREFIX}:{ws_type}"},
    )
    for child_tag, child_value in _serialize_value(value):
        ET.SubElement(value_el, _values(child_tag)).text = _text(child_value)
    type_string = ET.SubElement(envelope, _utcs("typeString"))
    if value.type_string:
        type_string.text = value.type_string
    ET.SubElement(envelope, _utcs("resourceID")).text = str(value.resource_id)
    ET.SubElement(envelope, _utcs("isValueRuntime")).text = _text(value.is_value_runtime)


def _serialize_value(value: ResourceValue) -> list[tuple[str, object]]:
    kind = value.kind
    raw = value.value
    if kind is ValueKind.BOOL:
        return [("value", bool(raw))]
    if kind is ValueKind.INT:
        return [("integer", int(raw))]  # type: ignore[arg-type]
    if kind is ValueKind.DOUBLE:
        return [("floatingPointValue", float(raw))]  # type: ignore[arg-type]
    if kind is ValueKind.ENUM:
        if not isinstance(raw, EnumValue):
            raise ValueError("ENUM values must be EnumValue instances")
        return [
            ("definitionTypeID", raw.definition_type_id),
            ("enumValueID", raw.enum_value_id),
            ("enumName", raw.enum_name or ""),
        ]
    if kind is ValueKind.DATE:
        if not isinstance(raw, date):
            raise ValueError("DATE values must be date instances")
        return [("day", raw.day), ("month", raw.month), ("year", raw.year)]
    if kind is ValueKind.TIME:
        if not isinstance(raw, time):
            raise ValueError("TIME values must be time instances")
        return [("hours", raw.hour), ("minutes", raw.minute), ("seconds", raw.second)]
    if kind is ValueKind.TIMER:
        return [("milliseconds", int(raw))]  # type: ignore[arg-type]
    return [("weekdayNumber", int(raw))]  # type: ignore[arg-type]


def build_set_resource_value(value: ResourceValue) -> str:
    payload = ET.Element(_utcs("setResourceValue1"))
    _fill_resource_value(payload, value)
    return build_envelope(payload)


def build_set_resource_values(values: Iterable[ResourceValue]) -> str:
    payload = ET.Element(_utcs("setResourceValues1"))
    for value in values:
        _fill_resource_value(ET.SubElement(payload, _utcs("arrayItem")), value)
    return build_envelope(payload)


# -----------------------------------------------------------------------------
# Response parsers
# -----------------------------------------------------------------------------


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _child_text(element: ET.Element, name: str) -> str | None:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _parse_bool(text: str | None) -> bool:
    return text is not None and text.strip().lower() == "true"


def _required_int(element: ET.Element, name: str) -> int:
    text = _child_text(element, name)
    if text is None:
        raise IhcMalformedResponseError(
            f"Missing <{name}> in <{_local(element.tag)}>",
            code=ErrorCode.XML_LOOKUP_ERROR,
        )
    try:
        return int(text)
    except ValueError as err:
        raise IhcMalformedResponseError(
            f"Invalid integer {text!r} in <{name}>", code=ErrorCode.XML_FORMAT_ERROR
        ) from err


def _is_nil(element: ET.Element) -> bool:
    return _parse_bool(element.get(f"{{{XSI_NS}}}nil"))


def parse_envelope(text: str) -> ET.Element | None:
    """Parse a SOAP response and return the first element of its body.

    Returns None for an empty body.

    Raises:
        IhcMalformedResponseError: If the text is not a SOAP envelope
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as err:
        raise IhcMalformedResponseError(
            "Response is not well-formed XML", code=ErrorCode.XML_FORMAT_ERROR
        ) from err
    if _local(root.tag) != "Envelope":
        raise IhcMalformedResponseError(
            f"Unexpected response root <{_local(root.tag)}>",
            code=ErrorCode.HTTP_UNEXPECTED_CONTENT_ERROR,
        )
    body = _child(root, "Body")
    if body is None:
        raise IhcMalformedResponseError(
            "SOAP envelope has no body", code=ErrorCode.XML_LOOKUP_ERROR
        )
    return body[0] if len(body) else None


def parse_fault(text: str) -> str | None:
    """Return the faultstring of a SOAP fault response, if any."""
    try:
        payload = parse_envelope(text)
    except IhcMalformedResponseError:
        return None
    if payload is None or _local(payload.tag) != "Fault":
        return None
    return _child_text(payload, "faultstring") or "SOAP fault"


def expect_payload(payload: ET.Element | None, name: str) -> ET.Element:
    """Check the body element has the expected name."""
    if payload is None or _local(payload.tag) != name:
        found = "empty body" if payload is None else f"<{_local(payload.tag)}>"
        raise IhcMalformedResponseError(
            f"Expected <{name}> in response, got {found}",
            code=ErrorCode.XML_LOOKUP_ERROR,
        )
    return payload


def parse_bool_result(payload: ET.Element | None, name: str) -> bool:
    return _parse_bool(expect_payload(payload, name).text)


def parse_string_result(payload: ET.Element | None, name: str) -> str | None:
    text = expect_payload(payload, name).text
    return text.strip() if text is not None else None


def _parse_ws_date(element: ET.Element | None) -> datetime | None:
    if element is None or _is_nil(element):
        return None
    try:
        return datetime(
            _required_int(element, "year"),
            _required_int(element, "monthWithJanuaryAsOne"),
            _required_int(element, "day"),
            _required_int(element, "hours"),
            _required_int(element, "minutes"),
            _required_int(element, "seconds"),
        )
    except ValueError as err:
        raise IhcMalformedResponseError(
            "Invalid date in response", code=ErrorCode.XML_FORMAT_ERROR
        ) from err


def _parse_user(element: ET.Element) -> IhcUser:
    group = _child(element, "group")
    return IhcUser(
        username=_child_text(element, "username") or "",
        firstname=_child_text(element, "firstname"),
        lastname=_child_text(element, "lastname"),
        phone=_child_text(element, "phone"),
        group=_child_text(group, "type") if group is not None else None,
        project=_child_text(element, "project"),
        created_date=_parse_ws_date(_child(element, "createdDate")),
        login_date=_parse_ws_date(_child(element, "loginDate")),
    )


def parse_authenticate(payload: ET.Element | None) -> AuthenticateResponse:
    element = expect_payload(payload, "authenticate2")
    user_el = _child(element, "loggedInUser")
    user = _parse_user(user_el) if user_el is not None and not _is_nil(user_el) else None
    return AuthenticateResponse(
        login_was_successful=_parse_bool(_child_text(element, "loginWasSuccessful")),
        connection_restricted=_parse_bool(
            _child_text(element, "loginFailedDueToConnectionRestrictions")
        ),
        insufficient_user_rights=_parse_bool(
            _child_text(element, "loginFailedDueToInsufficientUserRights")
        ),
        account_invalid=_parse_bool(_child_text(element, "loginFailedDueToAccountInvalid")),
        user=user,
    )


def _parse_enum_value(element: ET.Element) -> EnumValue:
    return EnumValue(
        definition_type_id=_required_int(element, "definitionTypeID"),
        enum_value_id=_required_int(element, "enumValueID"),
        enum_name=_child_text(element, "enumName"),
    )


def _parse_value(ws_type: str, element: ET.Element) -> object:
    kind = _WS_TYPE_TO_KIND[ws_type]
    if kind is ValueKind.BOOL:
        return _parse_bool(_child_text(element, "value"))
    if kind is ValueKind.INT:
        return _required_int(element, "integer")
    if kind is ValueKind.DOUBLE:
        text = _child_text(element, "floatingPointValue")
        try:
            return float(text)  # type: ignore[arg-type]
        except (TypeError, ValueError) as err:
            raise IhcMalformedResponseError(
                f"Invalid floating point value {text!r}", code=ErrorCode.XML_FORMAT_ERROR
            ) from err
    if kind is ValueKind.ENUM:
        return _parse_enum_value(element)
    try:
        if kind is ValueKind.DATE:
            return date(
                _required_int(element, "year"),
                _required_int(element, "month"),
                _required_int(element, "day"),
            )
        if kind is ValueKind.TIME:
            return time(
                _required_int(element, "hours"),
                _required_int(element, "minutes"),
                _required_int(element, "seconds"),
            )
    except ValueError as err:
        raise IhcMalformedResponseError(
            f"Invalid {kind.value} value in response", code=ErrorCode.XML_FORMAT_ERROR
        ) from err
    if kind is ValueKind.TIMER:
        return _required_int(element, "milliseconds")
    return _required_int(element, "weekdayNumber")


def parse_resource_value(element: ET.Element) -> ResourceValue | None:
    """Decode one resource value envelope.

    Returns None when the value has a type this client does not model.
    """
    value_el = _child(element, "value")
    if value_el is None:
        raise IhcMalformedResponseError(
            "Resource value envelope has no <value>", code=ErrorCode.XML_LOOKUP_ERROR
        )
    ws_type = (value_el.get(f"{{{XSI_NS}}}type") or "").rsplit(":", 1)[-1]
    resource_id = _required_int(element, "resourceID")
    if ws_type not in _WS_TYPE_TO_KIND:
        _LOGGER.debug("Skipping resource %d with unsupported type %r", resource_id, ws_type)
        return None
    return ResourceValue(
        resource_id=resource_id,
        kind=_WS_TYPE_TO_KIND[ws_type],
        value=_parse_value(ws_type, value_el),  # type: ignore[arg-type]
        is_value_runtime=_parse_bool(_child_text(element, "isValueRuntime")),
        type_string=_child_text(element, "typeString") or None,
    )


def parse_resource_values(payload: ET.Element | None, name: str) -> list[ResourceValue]:
    """Decode an array of resource value envelopes, in server order."""
    element = expect_payload(payload, name)
    values: list[ResourceValue] = []
    for item in element:
        if _local(item.tag) != "arrayItem" or _is_nil(item):
            continue
        if _child(item, "resourceID") is None:
            continue
        value = parse_resource_value(item)
        if value is not None:
            values.append(value)
    return values


def parse_wait_result(payload: ET.Element | None) -> WaitResult:
    """Decode a waitForResourceValueChanges response.

    An empty body or an array without resource values means the wait timed
    out without changes.
    """
    if payload is None:
        return WaitResult(timed_out=True)
    changes = parse_resource_values(payload, "waitForResourceValueChanges2")
    if not changes:
        return WaitResult(timed_out=True)
    return WaitResult(timed_out=False, changes=tuple(changes))


def _array_items(payload: ET.Element | None, name: str) -> list[ET.Element]:
    """Non-nil array items of a list response. An empty body is an empty list."""
    if payload is None:
        return []
    element = expect_payload(payload, name)
    return [item for item in element if _local(item.tag) == "arrayItem" and not _is_nil(item)]


def parse_enum_definitions(payload: ET.Element | None, name: str) -> list[EnumDefinition]:
    definitions: list[EnumDefinition] = []
    for item in _array_items(payload, name):
        values_el = _child(item, "enumeratorValues")
        values: list[EnumValue] = []
        if values_el is not None:
            values = [
                _parse_enum_value(value)
                for value in values_el
                if _local(value.tag) == "arrayItem" and not _is_nil(value)
            ]
        definitions.append(
            EnumDefinition(
                enumerator_definition_id=_required_int(item, "enumeratorDefinitionID"),
                values=tuple(values),
            )
        )
    return definitions


def parse_dataline_resources(payload: ET.Element | None, name: str) -> list[DatalineResource]:
    return [
        DatalineResource(
            resource_id=_required_int(item, "resourceID"),
            dataline_number=_required_int(item, "datalineNumber"),
        )
        for item in _array_items(payload, name)
    ]
