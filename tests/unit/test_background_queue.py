import asyncio

from voice_actions.services.background import BackgroundTaskQueue


class TestBackgroundTaskQueue:
    """Detached jobs run bounded, and failures are recorded instead of raised."""

    def test_concurrency_is_bounded(self):
        queue = BackgroundTaskQueue(max_concurrency=2, max_pending=10)
        active = {"now": 0, "peak": 0}

        async def job():
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1

        async def scenario():
            for _ in range(6):
                assert queue.submit("job", job) is True
            await queue.drain(timeout=5)

        asyncio.run(scenario())
        assert active["peak"] == 2
        assert queue.stats()["succeeded"] == 6

    def test_jobs_beyond_max_pending_are_dropped(self):
        queue = BackgroundTaskQueue(max_concurrency=1, max_pending=2)

        async def scenario():
            release = asyncio.Event()

            async def blocked():
                await release.wait()

            accepted = [queue.submit("blocked", blocked, user_id="u1") for _ in range(3)]
            release.set()
            await queue.drain(timeout=5)
            return accepted

        assert asyncio.run(scenario()) == [True, True, False]
        stats = queue.stats()
        assert stats["dropped"] == 1
        assert stats["submitted"] == 2
        assert stats["pending"] == 0

    def test_failures_are_captured(self):
        queue = BackgroundTaskQueue(max_concurrency=2, max_pending=10)
        calls = []

        def sync_job(value):
            calls.append(value)

        def failing_job():
            raise ValueError("boom")

        async def scenario():
            queue.submit("sync", sync_job, 42)
            queue.submit("failing", failing_job, item_id="task-1")
            await queue.drain(timeout=5)

        asyncio.run(scenario())

        assert calls == [42]
        stats = queue.stats()
        assert (stats["succeeded"], stats["failed"]) == (1, 1)
        failure = queue.recent_failures()[0]
        assert failure.name == "failing"
        assert failure.error == "ValueError: boom"
        assert failure.metadata == {"item_id": "task-1"}
        assert failure.duration_ms is not None

    def test_drain_waits_for_jobs_scheduled_by_jobs(self):
        queue = BackgroundTaskQueue(max_concurrency=2, max_pending=10)
        done = []

        async def child():
            done.append("child")

        async def parent():
            queue.submit("child", child)
            done.append("parent")

        async def scenario():
            queue.submit("parent", parent)
            await queue.drain(timeout=5)

        asyncio.run(scenario())
        assert sorted(done) == ["child", "parent"]
