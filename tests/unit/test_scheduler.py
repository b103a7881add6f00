"""Unit tests for the scheduler module."""

import asyncio

from flightmap.scheduler import AsyncioScheduler


class TestAsyncioScheduler:
    """Tests for AsyncioScheduler."""

    def test_schedule_replaces_pending_callback(self):
        """Test a second schedule under the same key replaces the first."""
        fired = []

        async def scenario():
            scheduler = AsyncioScheduler()
            scheduler.schedule("save:1", lambda: fired.append("first"), 0.01)
            scheduler.schedule("save:1", lambda: fired.append("second"), 0.01)
            assert scheduler.pending_keys() == ["save:1"]
            await asyncio.sleep(0.05)
            assert scheduler.pending_keys() == []

        asyncio.run(scenario())
        assert fired == ["second"]

    def test_independent_keys(self):
        fired = []

        async def scenario():
            scheduler = AsyncioScheduler()
            scheduler.schedule("a", lambda: fired.append("a"), 0.01)
            scheduler.schedule("b", lambda: fired.append("b"), 0.02)
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert fired == ["a", "b"]

    def test_cancel(self):
        fired = []

        async def scenario():
            scheduler = AsyncioScheduler()
            scheduler.schedule("a", lambda: fired.append("a"), 0.01)
            assert scheduler.cancel("a") is True
            assert scheduler.cancel("a") is False
            await asyncio.sleep(0.03)

        asyncio.run(scenario())
        assert fired == []

    def test_cancel_all_by_prefix(self):
        fired = []

        async def scenario():
            scheduler = AsyncioScheduler()
            scheduler.schedule("position:1", lambda: fired.append(1), 0.01)
            scheduler.schedule("position:2", lambda: fired.append(2), 0.01)
            scheduler.schedule("cache:1", lambda: fired.append("cache"), 0.01)
            scheduler.cancel_all("position:")
            assert scheduler.pending_keys() == ["cache:1"]
            await asyncio.sleep(0.03)

        asyncio.run(scenario())
        assert fired == ["cache"]

    def test_call_soon_runs_on_next_iteration(self):
        fired = []

        async def scenario():
            scheduler = AsyncioScheduler()
            scheduler.call_soon("settle", lambda: fired.append("settle"))
            assert fired == []
            await asyncio.sleep(0)
            assert fired == ["settle"]

        asyncio.run(scenario())

    def test_spawn_and_drain(self):
        """Test drain waits for tasks spawned by other tasks."""
        done = []

        async def scenario():
            scheduler = AsyncioScheduler()

            async def child():
                await asyncio.sleep(0.01)
                done.append("child")

            async def parent():
                scheduler.spawn(child())
                done.append("parent")

            future = scheduler.spawn(parent())
            await scheduler.drain()
            assert future.done()

        asyncio.run(scenario())
        assert done == ["parent", "child"]

    def test_drain_survives_failing_task(self):
        async def scenario():
            scheduler = AsyncioScheduler()

            async def boom():
                raise RuntimeError("boom")

            future = scheduler.spawn(boom())
            await scheduler.drain()
            assert isinstance(future.exception(), RuntimeError)

        asyncio.run(scenario())

    def test_close_cancels_timers_and_tasks(self):
        fired = []

        async def scenario():
            scheduler = AsyncioScheduler()
            scheduler.schedule("a", lambda: fired.append("a"), 0.01)
            task = scheduler.spawn(asyncio.sleep(10))
            scheduler.close()
            await asyncio.sleep(0.03)
            assert task.cancelled()
            assert scheduler.pending_keys() == []

        asyncio.run(scenario())
        assert fired == []
