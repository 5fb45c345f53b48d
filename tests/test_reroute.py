"""Tests for mosaic.navigation.reroute — passes, batching, and ordering.

These drive the ``Scheduler`` directly with ``FakeApp`` lifecycles whose
hooks can be held open, so interleavings are deterministic.
"""

import asyncio

import pytest

from mosaic.applications.activity import Location, compile_activity
from mosaic.applications.application import Application
from mosaic.applications.registry import Registry
from mosaic.applications.status import AppStatus
from mosaic.errors import LifecycleError
from mosaic.lifecycles.runner import LifecycleRunner
from mosaic.navigation.events import CapturedListeners, NavigationEvent
from mosaic.navigation.notifications import (
    APP_CHANGE,
    BEFORE_APP_CHANGE,
    BEFORE_MOUNT_ROUTING_EVENT,
    BEFORE_NO_APP_CHANGE,
    BEFORE_ROUTING_EVENT,
    NO_APP_CHANGE,
    ROUTING_EVENT,
    NotificationBus,
)
from mosaic.navigation.reroute import Scheduler, join
from mosaic.testing import FakeApp, RecordingSink


class _Harness:
    """Scheduler wired to a movable location and a shared hook log."""

    def __init__(self, url: str = "/") -> None:
        self.location = Location.parse(url)
        self.registry = Registry(lambda: self.location, load_error_retry=0.0)
        self.runner = LifecycleRunner(self.registry)
        self.bus = NotificationBus()
        self.sink = RecordingSink().attach(self.bus)
        self.listeners = CapturedListeners()
        self.scheduler = Scheduler(
            self.registry, self.runner, self.bus, self.listeners, lifecycle_logging=False,
        )
        self.log: list[str] = []

    def add(self, name: str, active_when: object = "/", load=None) -> FakeApp:
        fake = FakeApp(name, self.log)
        self.registry.register(Application(name, load or fake.load, compile_activity(active_when)))
        return fake

    def go(self, url: str) -> None:
        self.location = Location.parse(url)

    def status(self, name: str) -> AppStatus:
        return self.registry.status(name)

    def reset(self) -> None:
        self.log.clear()
        self.sink.clear()


async def until(predicate, limit: int = 200) -> None:
    for _ in range(limit):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def _popstate(url: str) -> tuple[NavigationEvent]:
    return (NavigationEvent("popstate", url),)


class TestEnter:
    def test_requires_running_loop(self) -> None:
        with pytest.raises(RuntimeError):
            _Harness().scheduler.trigger_change()

    @pytest.mark.asyncio
    async def test_no_change_pass(self) -> None:
        h = _Harness()
        h.scheduler.start()
        assert await h.scheduler.trigger_change() == []
        assert h.sink.names == [
            BEFORE_NO_APP_CHANGE,
            BEFORE_ROUTING_EVENT,
            BEFORE_MOUNT_ROUTING_EVENT,
            NO_APP_CHANGE,
            ROUTING_EVENT,
        ]
        assert h.sink.last(NO_APP_CHANGE).total_app_changes == 0
        assert h.scheduler.passes == 1
        assert not h.scheduler.in_flight

    @pytest.mark.asyncio
    async def test_flag_set_synchronously(self) -> None:
        h = _Harness()
        h.scheduler.start()
        future = h.scheduler.trigger_change()
        assert h.scheduler.in_flight
        await future
        assert not h.scheduler.in_flight


class TestLoadOnly:
    @pytest.mark.asyncio
    async def test_loads_without_mounting(self) -> None:
        h = _Harness("/")
        a = h.add("a", "/")
        b = h.add("b", "/")
        h.add("c", "/c")

        assert await h.scheduler.trigger_change() == []
        assert h.status("a") is AppStatus.NOT_BOOTSTRAPPED
        assert h.status("b") is AppStatus.NOT_BOOTSTRAPPED
        assert h.status("c") is AppStatus.NOT_LOADED
        assert a.calls("bootstrap") == b.calls("bootstrap") == 0
        assert h.scheduler.passes == 0
        assert h.sink.events == []

    @pytest.mark.asyncio
    async def test_overlapping_load_only_passes_share_loads(self) -> None:
        h = _Harness()
        a = h.add("a")
        a.hold("load")
        first = h.scheduler.trigger_change()
        second = h.scheduler.trigger_change()
        assert not h.scheduler.in_flight
        await until(lambda: a.calls("load") == 1)
        a.release("load")
        assert await first == await second == []
        assert a.calls("load") == 1

    @pytest.mark.asyncio
    async def test_then_start_mounts(self) -> None:
        h = _Harness()
        h.add("a")
        await h.scheduler.trigger_change()
        h.scheduler.start()
        assert await h.scheduler.trigger_change() == ["a"]
        assert h.log == ["a:load", "a:bootstrap", "a:mount"]


class TestFullPass:
    async def _x_mounted_y_parked(self, h: _Harness) -> tuple[FakeApp, FakeApp]:
        """Leave x mounted and y bootstrapped but unmounted."""
        x = h.add("x", "/x")
        y = h.add("y", "/y")
        h.scheduler.start()
        h.go("/y")
        assert await h.scheduler.trigger_change() == ["y"]
        h.go("/x")
        assert await h.scheduler.trigger_change() == ["x"]
        h.reset()
        return x, y

    @pytest.mark.asyncio
    async def test_swap_events_and_details(self) -> None:
        h = _Harness()
        await self._x_mounted_y_parked(h)

        h.go("/y")
        assert await h.scheduler.trigger_change() == ["y"]
        assert h.log == ["x:unmount", "y:mount"]
        assert h.sink.names == [
            BEFORE_APP_CHANGE,
            BEFORE_ROUTING_EVENT,
            BEFORE_MOUNT_ROUTING_EVENT,
            APP_CHANGE,
            ROUTING_EVENT,
        ]

        before = h.sink.last(BEFORE_APP_CHANGE)
        assert dict(before.new_app_statuses) == {
            "y": AppStatus.MOUNTED,
            "x": AppStatus.NOT_MOUNTED,
        }
        assert before.total_app_changes == 2

        after = h.sink.last(APP_CHANGE)
        assert after.apps_by_new_status[AppStatus.MOUNTED] == ("y",)
        assert after.apps_by_new_status[AppStatus.NOT_MOUNTED] == ("x",)
        assert h.status("x") is AppStatus.NOT_MOUNTED

    @pytest.mark.asyncio
    async def test_mount_waits_for_unmount(self) -> None:
        h = _Harness()
        x, y = await self._x_mounted_y_parked(h)
        x.hold("unmount")

        h.go("/y")
        future = h.scheduler.trigger_change()
        await until(lambda: x.calls("unmount") == 1)
        for _ in range(20):
            await asyncio.sleep(0)
        assert y.calls("mount") == 0
        assert BEFORE_MOUNT_ROUTING_EVENT not in h.sink.names

        x.release("unmount")
        assert await future == ["y"]
        assert h.log == ["x:unmount", "y:mount"]

    @pytest.mark.asyncio
    async def test_unmount_then_unload_when_requested(self) -> None:
        h = _Harness()
        x, _ = await self._x_mounted_y_parked(h)
        request = h.registry.request_unload(h.registry.require("x"))

        h.go("/y")
        await h.scheduler.trigger_change()
        assert h.log.index("x:unmount") < h.log.index("x:unload")
        assert h.status("x") is AppStatus.NOT_LOADED
        assert request.done()
        assert h.sink.last(APP_CHANGE).new_app_statuses["x"] is AppStatus.NOT_LOADED

    @pytest.mark.asyncio
    async def test_unload_group(self) -> None:
        h = _Harness("/x")
        x = h.add("x", "/x")
        await h.scheduler.trigger_change()
        assert h.status("x") is AppStatus.NOT_BOOTSTRAPPED

        h.go("/")
        request = h.registry.request_unload(h.registry.require("x"))
        h.scheduler.start()
        await h.scheduler.trigger_change()

        assert x.calls("unload") == 1
        assert h.status("x") is AppStatus.NOT_LOADED
        assert request.done()
        assert h.sink.last(BEFORE_APP_CHANGE).new_app_statuses == {"x": AppStatus.NOT_LOADED}

    @pytest.mark.asyncio
    async def test_original_event_reported(self) -> None:
        h = _Harness()
        h.scheduler.start()
        event_args = _popstate("/")
        await h.scheduler.enter(event_args)
        assert h.sink.last(BEFORE_ROUTING_EVENT).original_event is event_args[0]
        assert h.sink.last(ROUTING_EVENT).original_event is event_args[0]

        await h.scheduler.trigger_change()
        assert h.sink.last(ROUTING_EVENT).original_event is None

    @pytest.mark.asyncio
    async def test_load_error_retried_on_next_pass(self) -> None:
        fake = FakeApp("a")
        attempts: list[int] = []

        async def flaky(props):
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionError("offline")
            return fake

        h = _Harness()
        h.add("a", load=flaky)
        h.scheduler.start()
        with pytest.raises(LifecycleError):
            await h.scheduler.trigger_change()
        assert h.status("a") is AppStatus.LOAD_ERROR

        assert await h.scheduler.trigger_change() == ["a"]


class TestActivityRechecks:
    @pytest.mark.asyncio
    async def test_deselected_during_load(self) -> None:
        h = _Harness("/a")
        a = h.add("a", "/a")
        a.hold("load")
        h.scheduler.start()

        future = h.scheduler.trigger_change()
        await until(lambda: a.calls("load") == 1)
        h.go("/b")
        a.release("load")

        assert await future == []
        assert h.status("a") is AppStatus.NOT_BOOTSTRAPPED
        assert a.calls("bootstrap") == 0

    @pytest.mark.asyncio
    async def test_deselected_during_bootstrap(self) -> None:
        h = _Harness("/a")
        a = h.add("a", "/a")
        a.hold("bootstrap")
        h.scheduler.start()

        future = h.scheduler.trigger_change()
        await until(lambda: a.calls("bootstrap") == 1)
        h.go("/b")
        a.release("bootstrap")

        assert await future == []
        assert h.status("a") is AppStatus.NOT_MOUNTED
        assert a.calls("mount") == 0


class TestBatching:
    @pytest.mark.asyncio
    async def test_queued_requests_share_one_pass(self) -> None:
        h = _Harness("/a")
        a = h.add("a", "/a")
        a.hold("load")
        h.scheduler.start()

        first = h.scheduler.trigger_change()
        second = h.scheduler.trigger_change()
        third = h.scheduler.trigger_change()
        assert second is not third
        await until(lambda: a.calls("load") == 1)
        a.release("load")

        assert await first == ["a"]
        assert await second == ["a"]
        assert await third == ["a"]
        assert h.scheduler.passes == 2
        assert not h.scheduler.in_flight

    @pytest.mark.asyncio
    async def test_requests_during_drain_pass_get_a_third(self) -> None:
        h = _Harness("/a")
        a = h.add("a", "/a")
        a.hold("load")
        h.scheduler.start()

        first = h.scheduler.trigger_change()
        second = h.scheduler.trigger_change()
        await until(lambda: a.calls("load") == 1)
        a.release("load")
        assert await first == ["a"]

        # The drain pass for `second` is already in flight
        assert h.scheduler.in_flight
        third = h.scheduler.trigger_change()
        assert await second == ["a"]
        assert await third == ["a"]
        assert h.scheduler.passes == 3

    @pytest.mark.asyncio
    async def test_listeners_replayed_in_arrival_order(self) -> None:
        h = _Harness("/a")
        a = h.add("a", "/a")
        a.hold("load")
        seen: list[str] = []
        h.listeners.add("popstate", lambda event: seen.append(event.url))
        h.scheduler.start()

        futures = [h.scheduler.enter(_popstate(url)) for url in ("/e1", "/e2", "/e3")]
        await until(lambda: a.calls("load") == 1)
        a.release("load")
        await asyncio.gather(*futures)

        assert seen == ["/e1", "/e2", "/e3"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_pass_rejects_served_and_queued(self) -> None:
        h = _Harness()
        z = h.add("z")
        h.add("w")
        z.fail("mount", RuntimeError("no root element"))
        h.scheduler.start()

        first = h.scheduler.trigger_change()
        queued = h.scheduler.trigger_change()

        with pytest.raises(LifecycleError) as info:
            await first
        with pytest.raises(LifecycleError) as queued_info:
            await queued
        assert queued_info.value is info.value
        assert info.value.app_name == "z"
        assert info.value.phase == "mount"

        assert h.status("w") is AppStatus.MOUNTED
        assert h.status("z") is AppStatus.SKIP_BECAUSE_BROKEN
        assert not h.scheduler.in_flight
        assert APP_CHANGE not in h.sink.names

        assert await h.scheduler.trigger_change() == ["w"]

    @pytest.mark.asyncio
    async def test_deactivation_failure_blocks_mounts(self) -> None:
        h = _Harness()
        x = h.add("x", "/x")
        y = h.add("y", "/y")
        seen: list[str] = []
        h.listeners.add("popstate", lambda event: seen.append(event.url))
        h.scheduler.start()
        h.go("/x")
        await h.scheduler.trigger_change()
        h.sink.clear()
        x.fail("unmount", RuntimeError("stuck"))

        h.go("/y")
        with pytest.raises(LifecycleError) as info:
            await h.scheduler.enter(_popstate("/y"))

        assert info.value.app_name == "x"
        assert info.value.phase == "unmount"
        assert h.status("x") is AppStatus.SKIP_BECAUSE_BROKEN
        assert h.status("y") is AppStatus.NOT_MOUNTED
        assert y.calls("mount") == 0
        assert BEFORE_MOUNT_ROUTING_EVENT not in h.sink.names
        assert seen == ["/y"]
        assert not h.scheduler.in_flight

    @pytest.mark.asyncio
    async def test_listener_errors_are_deferred(self) -> None:
        h = _Harness()
        loop = asyncio.get_running_loop()
        contexts: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: contexts.append(context))
        try:

            def broken_listener(event: NavigationEvent) -> None:
                raise RuntimeError("listener")

            def broken_notification(event_name, detail) -> None:
                raise RuntimeError("notification")

            h.listeners.add("popstate", broken_listener)
            h.bus.on(APP_CHANGE, broken_notification)
            h.add("a")
            h.scheduler.start()

            assert await h.scheduler.enter(_popstate("/")) == ["a"]
            await until(lambda: len(contexts) == 2)
        finally:
            loop.set_exception_handler(None)

        messages = sorted(context["message"] for context in contexts)
        assert messages == [
            "A app-change listener raised",
            "A captured navigation listener raised",
        ]
        assert h.sink.names[-1] == ROUTING_EVENT


class TestJoin:
    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        assert await join([]) == []

    @pytest.mark.asyncio
    async def test_results_in_task_order(self) -> None:
        async def value(v: int, delay: float) -> int:
            await asyncio.sleep(delay)
            return v

        tasks = [asyncio.ensure_future(value(1, 0.02)), asyncio.ensure_future(value(2, 0))]
        assert await join(tasks) == [1, 2]

    @pytest.mark.asyncio
    async def test_first_error_in_completion_order(self) -> None:
        async def fail(message: str, delay: float) -> None:
            await asyncio.sleep(delay)
            raise RuntimeError(message)

        async def ok() -> str:
            await asyncio.sleep(0.03)
            return "ok"

        slow_fail = asyncio.ensure_future(fail("slow", 0.02))
        fast_fail = asyncio.ensure_future(fail("fast", 0))
        success = asyncio.ensure_future(ok())

        with pytest.raises(RuntimeError, match="fast"):
            await join([slow_fail, fast_fail, success])
        assert success.done()
        assert slow_fail.done()
