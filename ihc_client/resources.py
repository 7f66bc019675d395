"""Resource interaction service: runtime values and value notifications."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable

from .errors import ErrorCode, IhcMalformedResponseError
from .models import DatalineResource, EnumDefinition, ResourceValue, WaitResult
from .protocol import (
    RESOURCE_INTERACTION_SERVICE,
    build_envelope,
    build_int_array,
    build_scalar,
    build_set_resource_value,
    build_set_resource_values,
    expect_payload,
    parse_bool_result,
    parse_dataline_resources,
    parse_enum_definitions,
    parse_resource_value,
    parse_resource_values,
    parse_string_result,
    parse_wait_result,
)
from .session import IhcSession
from .subscription import (
    DEFAULT_MAX_POLL_RETRIES,
    DEFAULT_REST_DELAY,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TEARDOWN_TIMEOUT,
    DEFAULT_WAIT_TIMEOUT,
    StopSignal,
    ValueChangeStream,
)

_LOGGER = logging.getLogger(__name__)


class ResourceInteractionService:
    """Client for the controller's ResourceInteractionService.

    All calls except disabling notifications require an authenticated
    session and raise IhcNotAuthenticatedError without contacting the
    controller otherwise.
    """

    def __init__(self, session: IhcSession) -> None:
        self.session = session

    async def _call(self, action: str, body: str, *, require_auth: bool = True) -> ET.Element | None:
        response = await self.session.call(
            RESOURCE_INTERACTION_SERVICE, action, body, require_auth=require_auth
        )
        return response.payload

    async def enable_runtime_value_notifications(
        self, resource_ids: Iterable[int]
    ) -> list[ResourceValue]:
        """Register resources for value change notifications.

        Must be called before wait_for_resource_value_changes.

        Returns:
            Current values of the registered resources
        """
        payload = await self._call(
            "enableRuntimeValueNotifications",
            build_int_array("enableRuntimeValueNotifications1", resource_ids),
        )
        if payload is None:
            return []
        return parse_resource_values(payload, "enableRuntimeValueNotifications2")

    async def disable_runtime_value_notifications(
        self, resource_ids: Iterable[int], *, require_auth: bool = True
    ) -> bool:
        """Unregister resources from value change notifications.

        With require_auth=False the call is made even if the session is no
        longer connected.
        """
        payload = await self._call(
            "disableRuntimeValueNotifactions",
            build_int_array("disableRuntimeValueNotifactions1", resource_ids),
            require_auth=require_auth,
        )
        if payload is None:
            return False
        return parse_bool_result(payload, "disableRuntimeValueNotifactions2")

    async def wait_for_resource_value_changes(
        self, timeout_seconds: int = DEFAULT_WAIT_TIMEOUT
    ) -> WaitResult:
        """Long-poll for changes of resources registered for notifications.

        The controller holds the call for up to timeout_seconds. Keep this
        below the controller's own limit (around 20 seconds).
        """
        payload = await self._call(
            "waitForResourceValueChanges",
            build_scalar("waitForResourceValueChanges1", timeout_seconds),
        )
        return parse_wait_result(payload)

    async def _single_value(self, action: str, resource_id: int) -> ResourceValue:
        payload = await self._call(action, build_scalar(f"{action}1", resource_id))
        value = parse_resource_value(expect_payload(payload, f"{action}2"))
        if value is None:
            raise IhcMalformedResponseError(
                f"Resource {resource_id} has an unsupported value type",
                code=ErrorCode.FEATURE_NOT_IMPLEMENTED,
            )
        return value

    async def get_runtime_value(self, resource_id: int) -> ResourceValue:
        return await self._single_value("getRuntimeValue", resource_id)

    async def get_runtime_values(self, resource_ids: Iterable[int]) -> list[ResourceValue]:
        payload = await self._call(
            "getRuntimeValues", build_int_array("getRuntimeValues1", resource_ids)
        )
        return parse_resource_values(payload, "getRuntimeValues2")

    async def set_resource_value(self, value: ResourceValue) -> bool:
        """Write one resource value. Returns True if the controller accepted it."""
        _LOGGER.debug("Setting resource %d to %r", value.resource_id, value.value)
        payload = await self._call("setResourceValue", build_set_resource_value(value))
        return parse_bool_result(payload, "setResourceValue2")

    async def set_resource_values(self, values: Iterable[ResourceValue]) -> bool:
        payload = await self._call("setResourceValues", build_set_resource_values(values))
        return parse_bool_result(payload, "setResourceValues2")

    # -------------------------------------------------------------------------
    # Initial values
    # -------------------------------------------------------------------------

    async def enable_initial_value_notifications(
        self, resource_ids: Iterable[int]
    ) -> list[ResourceValue]:
        """Register resources for initial (power-up) value change notifications."""
        payload = await self._call(
            "enableInitialValueNotifications",
            build_int_array("enableInitialValueNotifications1", resource_ids),
        )
        if payload is None:
            return []
        return parse_resource_values(payload, "enableInitialValueNotifications2")

    async def disable_initial_value_notifications(self, resource_ids: Iterable[int]) -> bool:
        payload = await self._call(
            "disableInitialValueNotifactions",
            build_int_array("disableInitialValueNotifactions1", resource_ids),
        )
        if payload is None:
            return False
        return parse_bool_result(payload, "disableInitialValueNotifactions2")

    async def get_initial_value(self, resource_id: int) -> ResourceValue:
        """Return the value a resource takes when the controller starts."""
        return await self._single_value("getInitialValue", resource_id)

    async def get_initial_values(self, resource_ids: Iterable[int]) -> list[ResourceValue]:
        payload = await self._call(
            "getInitialValues", build_int_array("getInitialValues1", resource_ids)
        )
        return parse_resource_values(payload, "getInitialValues2")

    # -------------------------------------------------------------------------
    # Project metadata
    # -------------------------------------------------------------------------

    async def get_enumerator_definitions(self) -> list[EnumDefinition]:
        """Return all enumerator definitions of the installed project.

        Used to resolve the ids carried by ENUM resource values.
        """
        payload = await self._call("getEnumeratorDefinitions", build_envelope())
        return parse_enum_definitions(payload, "getEnumeratorDefinitions1")

    async def _datalines(self, action: str) -> list[DatalineResource]:
        payload = await self._call(action, build_envelope())
        return parse_dataline_resources(payload, f"{action}1")

    async def get_all_dataline_inputs(self) -> list[DatalineResource]:
        return await self._datalines("getAllDatalineInputs")

    async def get_all_dataline_outputs(self) -> list[DatalineResource]:
        return await self._datalines("getAllDatalineOutputs")

    async def get_extra_dataline_inputs(self) -> list[DatalineResource]:
        return await self._datalines("getExtraDatalineInputs")

    async def get_extra_dataline_outputs(self) -> list[DatalineResource]:
        return await self._datalines("getExtraDatalineOutputs")

    async def get_resource_type(self, resource_id: int) -> str | None:
        """Return the type string of a resource, e.g. "dataline_input"."""
        payload = await self._call(
            "getResourceType", build_scalar("getResourceType1", resource_id)
        )
        return parse_string_result(payload, "getResourceType2")

    def stream_changes(
        self,
        resource_ids: Iterable[int],
        *,
        stop_event: StopSignal | None = None,
        wait_timeout: int = DEFAULT_WAIT_TIMEOUT,
        max_poll_retries: int = DEFAULT_MAX_POLL_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        teardown_timeout: float = DEFAULT_TEARDOWN_TIMEOUT,
        rest_delay: float = DEFAULT_REST_DELAY,
    ) -> ValueChangeStream:
        """Open a live stream of value changes for the given resources.

        Each call creates an independent subscription; overlapping resource
        sets are not merged.

        Raises:
            IhcNotAuthenticatedError: If the session is not connected. No
                request is made in that case.
        """
        return ValueChangeStream(
            self,
            resource_ids,
            stop_event=stop_event,
            wait_timeout=wait_timeout,
            max_poll_retries=max_poll_retries,
            retry_delay=retry_delay,
            teardown_timeout=teardown_timeout,
            rest_delay=rest_delay,
        )
