"""Live resource value subscriptions.

Turns the controller's stateful notification protocol

    enableRuntimeValueNotifications -> waitForResourceValueChanges (repeated)
    -> disableRuntimeValueNotifactions

into an async iterator of ValueChangeEvent objects.

Critical invariants:
- Nothing is polled before the enable call succeeds; an enable failure
  ends the stream with no teardown
- Only one wait call is in flight per subscription; events are delivered
  in server order, each change once
- The disable call runs exactly once after the poll loop exits, for any
  reason, and is not interrupted by the caller's cancellation
- A teardown failure is recorded and logged, never raised over the
  stream's own outcome
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import (
    IhcNotAuthenticatedError,
    IhcSubscriptionTeardownError,
    IhcTransportError,
)
from .models import ValueChangeEvent

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from .resources import ResourceInteractionService

_LOGGER = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 15
DEFAULT_MAX_POLL_RETRIES = 10
DEFAULT_RETRY_DELAY = 0.1
DEFAULT_TEARDOWN_TIMEOUT = 10.0
# Pause before each wait call and before the disable call.
DEFAULT_REST_DELAY = 0.025

StopSignal = asyncio.Event | threading.Event


@dataclass
class Subscription:
    """Remote notification registration owned by one stream.

    Attributes:
        resource_ids: Resource ids registered for notifications
        active: True between a successful enable and the disable attempt
        teardown_error: Failure of the disable call, if any
        polls: Completed wait calls
        events: Delivered value change events
    """

    resource_ids: tuple[int, ...]
    active: bool = False
    teardown_error: IhcSubscriptionTeardownError | None = None
    polls: int = 0
    events: int = 0


class ValueChangeStream:
    """Async iterator of value changes for a set of resources.

    Each stream owns an independent Subscription. Iteration is lazy: the
    enable call is made on the first ``__anext__``. A stream ends when the
    stop signal is set (checked before each wait call), when ``stop()`` is
    called, when the session disconnects, or with an error. Leaving an
    ``async for`` with ``break`` does not close the stream; use it as an
    async context manager or call ``aclose()`` so teardown runs at once.

    Usage:
        async with resources.stream_changes([101, 102], stop_event=stop) as stream:
            async for event in stream:
                handle(event)
    """

    def __init__(
        self,
        resources: ResourceInteractionService,
        resource_ids: Iterable[int],
        *,
        stop_event: StopSignal | None = None,
        wait_timeout: int = DEFAULT_WAIT_TIMEOUT,
        max_poll_retries: int = DEFAULT_MAX_POLL_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        teardown_timeout: float = DEFAULT_TEARDOWN_TIMEOUT,
        rest_delay: float = DEFAULT_REST_DELAY,
    ) -> None:
        ids = tuple(sorted({int(resource_id) for resource_id in resource_ids}))
        if not ids:
            raise ValueError("At least one resource id is required")
        if not resources.session.is_authenticated:
            raise IhcNotAuthenticatedError("Value change stream requires an authenticated session")

        self.subscription = Subscription(resource_ids=ids)
        self._resources = resources
        self._stop_event = stop_event
        self._stopped = False
        self._wait_timeout = wait_timeout
        self._max_poll_retries = max_poll_retries
        self._retry_delay = retry_delay
        self._teardown_timeout = teardown_timeout
        self._rest_delay = rest_delay
        self._iterator: AsyncIterator[ValueChangeEvent] | None = None

    @property
    def resource_ids(self) -> tuple[int, ...]:
        return self.subscription.resource_ids

    def stop(self) -> None:
        """Request the stream to end before its next wait call."""
        self._stopped = True

    def _stop_requested(self) -> bool:
        return self._stopped or (self._stop_event is not None and self._stop_event.is_set())

    def __aiter__(self) -> ValueChangeStream:
        return self

    async def __anext__(self) -> ValueChangeEvent:
        if self._iterator is None:
            self._iterator = self._run()
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        """Stop iteration and wait for the subscription teardown."""
        self._stopped = True
        if self._iterator is not None:
            await self._iterator.aclose()

    async def __aenter__(self) -> ValueChangeStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Internal: Protocol
    # -------------------------------------------------------------------------

    async def _run(self) -> AsyncIterator[ValueChangeEvent]:
        sub = self.subscription
        session = self._resources.session
        if not session.is_authenticated:
            raise IhcNotAuthenticatedError("Value change stream requires an authenticated session")

        _LOGGER.debug("Enabling value notifications for %s", sub.resource_ids)
        await self._resources.enable_runtime_value_notifications(sub.resource_ids)
        sub.active = True

        try:
            failures = 0
            while not self._stop_requested():
                if not session.is_authenticated:
                    _LOGGER.info(
                        "Session disconnected, ending subscription for %s", sub.resource_ids
                    )
                    break
                if self._rest_delay:
                    await asyncio.sleep(self._rest_delay)
                try:
                    result = await self._resources.wait_for_resource_value_changes(
                        self._wait_timeout
                    )
                except IhcTransportError as err:
                    failures += 1
                    if failures > self._max_poll_retries:
                        _LOGGER.error(
                            "Waiting for value changes failed %d times in a row: %s",
                            failures,
                            err,
                        )
                        raise
                    delay = self._retry_delay * failures * failures
                    _LOGGER.warning(
                        "Waiting for value changes failed (%d/%d): %s; retrying in %.2fs",
                        failures,
                        self._max_poll_retries,
                        err,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue

                failures = 0
                sub.polls += 1
                if result.timed_out:
                    continue
                for value in result.changes:
                    sub.events += 1
                    yield ValueChangeEvent.from_resource_value(value)
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        """Disable notifications, shielded from cancellation of the caller.

        A cancellation received while the disable call runs is re-raised
        once it has finished.
        """
        task = asyncio.ensure_future(self._disable())
        cancelled = False
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                cancelled = True
        self.subscription.active = False
        if cancelled:
            raise asyncio.CancelledError

    async def _disable(self) -> None:
        ids = self.subscription.resource_ids
        _LOGGER.debug("Disabling value notifications for %s", ids)
        try:
            if self._rest_delay:
                await asyncio.sleep(self._rest_delay)
            confirmed = await asyncio.wait_for(
                self._resources.disable_runtime_value_notifications(ids, require_auth=False),
                timeout=self._teardown_timeout,
            )
        except Exception as err:
            error = IhcSubscriptionTeardownError(
                ids, f"Disabling value notifications for {list(ids)} failed: {err!r}"
            )
            error.__cause__ = err
            self.subscription.teardown_error = error
            _LOGGER.warning("%s", error)
            return
        if not confirmed:
            _LOGGER.debug("Controller did not confirm disabling notifications for %s", ids)
