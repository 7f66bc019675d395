"""Test the live value change stream (enable / wait / disable protocol)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from ihc_client import (
    IhcConnectionError,
    IhcNotAuthenticatedError,
    IhcResponseError,
    IhcSession,
    IhcSubscriptionTeardownError,
    IhcTimeout,
    ResourceInteractionService,
    ResourceValue,
    ValueKind,
    WaitResult,
)

TIMED_OUT = WaitResult(timed_out=True)


def changes(*values: tuple[int, bool]) -> WaitResult:
    return WaitResult(
        timed_out=False,
        changes=tuple(ResourceValue.boolean_output(rid, value) for rid, value in values),
    )


@pytest.fixture
def resources(connected_session: IhcSession) -> ResourceInteractionService:
    """Service with enable/wait/disable replaced by recording mocks."""
    service = ResourceInteractionService(connected_session)
    service.enable_runtime_value_notifications = AsyncMock(return_value=[])
    service.wait_for_resource_value_changes = AsyncMock(return_value=TIMED_OUT)
    service.disable_runtime_value_notifications = AsyncMock(return_value=True)
    return service


@pytest.fixture
def calls(resources: ResourceInteractionService) -> MagicMock:
    """Parent mock recording the order of protocol calls."""
    manager = MagicMock()
    manager.attach_mock(resources.enable_runtime_value_notifications, "enable")
    manager.attach_mock(resources.wait_for_resource_value_changes, "wait")
    manager.attach_mock(resources.disable_runtime_value_notifications, "disable")
    return manager


async def _block_forever(*_args: object, **_kwargs: object) -> WaitResult:
    await asyncio.sleep(3600)
    return TIMED_OUT


class TestStreamPreconditions:
    """Test checks made before any remote call."""

    async def test_not_authenticated_fails_immediately(
        self, ihc_session: IhcSession, mock_transport: MagicMock
    ) -> None:
        """Test stream_changes without a login raises and sends nothing."""
        service = ResourceInteractionService(ihc_session)

        with pytest.raises(IhcNotAuthenticatedError):
            service.stream_changes([101, 102])

        mock_transport.send.assert_not_called()

    async def test_empty_resource_set_rejected(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test a stream needs at least one resource id."""
        with pytest.raises(ValueError):
            resources.stream_changes([])

    async def test_stream_is_lazy(
        self, resources: ResourceInteractionService, calls: MagicMock
    ) -> None:
        """Test nothing is enabled until the stream is iterated."""
        stream = resources.stream_changes({101, 102})
        await stream.aclose()

        assert calls.mock_calls == []
        assert stream.subscription.active is False


class TestStreamProtocol:
    """Test the enable / poll / disable sequence."""

    async def test_timeouts_then_change_yields_single_event(
        self, resources: ResourceInteractionService, calls: MagicMock
    ) -> None:
        """Test two timed-out polls then one change give exactly one event."""
        resources.wait_for_resource_value_changes.side_effect = [
            TIMED_OUT,
            TIMED_OUT,
            changes((101, True)),
        ]
        events = []

        async with resources.stream_changes({101, 102}) as stream:
            async for event in stream:
                events.append(event)
                stream.stop()

        assert len(events) == 1
        assert events[0].resource_id == 101
        assert events[0].value is True
        assert events[0].kind is ValueKind.BOOL
        assert events[0].timestamp is not None
        assert stream.subscription.polls == 3
        assert calls.mock_calls == [
            call.enable((101, 102)),
            call.wait(15),
            call.wait(15),
            call.wait(15),
            call.disable((101, 102), require_auth=False),
        ]

    async def test_batch_order_preserved(self, resources: ResourceInteractionService) -> None:
        """Test events within one response keep server order."""
        resources.wait_for_resource_value_changes.side_effect = [
            changes((101, False), (102, True), (101, True)),
        ]
        seen = []

        async with resources.stream_changes([102, 101]) as stream:
            async for event in stream:
                seen.append((event.resource_id, event.value))
                if len(seen) == 3:
                    stream.stop()

        assert seen == [(101, False), (102, True), (101, True)]
        assert resources.wait_for_resource_value_changes.await_count == 1

    async def test_consumer_break_disables_once(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test leaving the stream after one event tears down exactly once."""
        resources.wait_for_resource_value_changes.side_effect = [
            changes((101, True), (102, True)),
        ]

        async with resources.stream_changes({101, 102}) as stream:
            async for _event in stream:
                break

        resources.disable_runtime_value_notifications.assert_awaited_once_with(
            (101, 102), require_auth=False
        )
        assert resources.wait_for_resource_value_changes.await_count == 1
        assert stream.subscription.active is False

    async def test_stop_event_checked_before_each_wait(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test a set stop event ends the stream after the in-flight poll."""
        stop = asyncio.Event()

        async def slow_timeout(*_args: object) -> WaitResult:
            stop.set()
            await asyncio.sleep(0.01)
            return TIMED_OUT

        resources.wait_for_resource_value_changes.side_effect = slow_timeout

        events = [event async for event in resources.stream_changes([7], stop_event=stop)]

        assert events == []
        assert resources.wait_for_resource_value_changes.await_count == 1
        resources.disable_runtime_value_notifications.assert_awaited_once()

    async def test_threading_event_accepted_as_stop_signal(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test a threading.Event can stop the stream."""
        import threading

        stop = threading.Event()
        stop.set()

        events = [event async for event in resources.stream_changes([7], stop_event=stop)]

        assert events == []
        resources.wait_for_resource_value_changes.assert_not_awaited()
        resources.disable_runtime_value_notifications.assert_awaited_once()

    async def test_rest_delay_before_wait_and_disable(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test the stream pauses before each wait call and before disabling."""
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        stamps: dict[str, float] = {}

        async def wait(*_args: object) -> WaitResult:
            stamps["wait"] = loop.time()
            stop.set()
            return TIMED_OUT

        async def disable(*_args: object, **_kwargs: object) -> bool:
            stamps["disable"] = loop.time()
            return True

        resources.wait_for_resource_value_changes.side_effect = wait
        resources.disable_runtime_value_notifications.side_effect = disable

        start = loop.time()
        events = [
            event async for event in resources.stream_changes([7], stop_event=stop, rest_delay=0.05)
        ]

        assert events == []
        assert stamps["wait"] - start >= 0.04
        assert stamps["disable"] - stamps["wait"] >= 0.04

    async def test_session_disconnect_ends_stream(
        self,
        resources: ResourceInteractionService,
        connected_session: IhcSession,
    ) -> None:
        """Test the loop stops polling once the session is disconnected."""
        resources.wait_for_resource_value_changes.side_effect = [changes((5, True))]

        async with resources.stream_changes([5]) as stream:
            async for _event in stream:
                connected_session.invalidate()

        assert resources.wait_for_resource_value_changes.await_count == 1
        resources.disable_runtime_value_notifications.assert_awaited_once_with(
            (5,), require_auth=False
        )

    async def test_independent_subscriptions(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test overlapping streams each enable and disable on their own."""
        first = resources.stream_changes([1, 2])
        second = resources.stream_changes([2, 3])
        first.stop()
        second.stop()

        async with first, second:
            assert [e async for e in first] == []
            assert [e async for e in second] == []

        assert resources.enable_runtime_value_notifications.await_args_list == [
            call((1, 2)),
            call((2, 3)),
        ]
        assert resources.disable_runtime_value_notifications.await_count == 2


class TestStreamFailures:
    """Test failure handling in each phase."""

    async def test_enable_failure_skips_poll_and_teardown(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test an enable failure ends the stream before any wait or disable."""
        resources.enable_runtime_value_notifications.side_effect = IhcResponseError(
            500, "enable failed"
        )

        stream = resources.stream_changes([101, 102])
        with pytest.raises(IhcResponseError):
            async for _event in stream:
                pass

        resources.wait_for_resource_value_changes.assert_not_awaited()
        resources.disable_runtime_value_notifications.assert_not_awaited()
        assert stream.subscription.active is False

    async def test_transient_poll_failures_retried(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test temporary network errors during a poll are retried."""
        resources.wait_for_resource_value_changes.side_effect = [
            IhcConnectionError("reset"),
            IhcTimeout("slow"),
            changes((9, True)),
        ]

        async with resources.stream_changes([9], retry_delay=0) as stream:
            event = await stream.__anext__()

        assert event.resource_id == 9
        assert resources.wait_for_resource_value_changes.await_count == 3
        resources.disable_runtime_value_notifications.assert_awaited_once()

    async def test_poll_failure_after_retries_propagates(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test exhausting poll retries raises the last error and still tears down."""
        resources.wait_for_resource_value_changes.side_effect = IhcConnectionError("down")

        stream = resources.stream_changes([9], max_poll_retries=2, retry_delay=0)
        with pytest.raises(IhcConnectionError, match="down"):
            async for _event in stream:
                pass

        assert resources.wait_for_resource_value_changes.await_count == 3
        resources.disable_runtime_value_notifications.assert_awaited_once_with(
            (9,), require_auth=False
        )
        assert stream.subscription.active is False

    async def test_teardown_failure_does_not_mask_poll_error(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test a disable failure is recorded while the poll error is raised."""
        resources.wait_for_resource_value_changes.side_effect = IhcConnectionError("down")
        resources.disable_runtime_value_notifications.side_effect = IhcTimeout("gone")

        stream = resources.stream_changes([9], max_poll_retries=0)
        with pytest.raises(IhcConnectionError):
            async for _event in stream:
                pass

        error = stream.subscription.teardown_error
        assert isinstance(error, IhcSubscriptionTeardownError)
        assert error.resource_ids == (9,)
        assert isinstance(error.__cause__, IhcTimeout)

    async def test_teardown_failure_after_normal_stop_is_not_raised(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test a clean stop stays clean when the disable call fails."""
        resources.disable_runtime_value_notifications.side_effect = IhcConnectionError("x")
        stream = resources.stream_changes([9])
        stream.stop()

        async with stream:
            assert [e async for e in stream] == []

        assert stream.subscription.teardown_error is not None


class TestStreamCancellation:
    """Test cancellation of the consuming task."""

    async def test_cancel_during_wait_still_disables(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test cancelling the consumer mid-poll runs the disable call."""
        resources.wait_for_resource_value_changes.side_effect = _block_forever

        async def consume() -> None:
            async with resources.stream_changes([101, 102]) as stream:
                async for _event in stream:
                    pass

        task = asyncio.create_task(consume())
        while resources.wait_for_resource_value_changes.await_count == 0:
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        resources.disable_runtime_value_notifications.assert_awaited_once_with(
            (101, 102), require_auth=False
        )
        assert resources.wait_for_resource_value_changes.await_count == 1

    async def test_teardown_survives_repeated_cancellation(
        self, resources: ResourceInteractionService
    ) -> None:
        """Test a second cancel during teardown does not abort the disable call."""
        resources.wait_for_resource_value_changes.side_effect = _block_forever
        disable_started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow_disable(*_args: object, **_kwargs: object) -> bool:
            disable_started.set()
            await release.wait()
            finished.append(True)
            return True

        resources.disable_runtime_value_notifications.side_effect = slow_disable

        async def consume() -> None:
            async for _event in resources.stream_changes([1]):
                pass

        task = asyncio.create_task(consume())
        while resources.wait_for_resource_value_changes.await_count == 0:
            await asyncio.sleep(0)
        task.cancel()
        await disable_started.wait()
        task.cancel()
        await asyncio.sleep(0)
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert finished == [True]
