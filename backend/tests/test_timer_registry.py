import asyncio

from hookscheduler.services.timer_registry import TimerRegistry


def test_install_replaces_and_cancels_previous_timer() -> None:
    async def scenario():
        registry = TimerRegistry()
        first = asyncio.create_task(asyncio.sleep(60))
        second = asyncio.create_task(asyncio.sleep(60))

        registry.install(7, first)
        registry.install(7, second)
        await asyncio.sleep(0)

        assert first.cancelled()
        assert registry.get(7) is second
        assert registry.active_count() == 1

        registry.cancel_all()
        await asyncio.sleep(0)
        assert second.cancelled()

    asyncio.run(scenario())


def test_cancel_is_idempotent() -> None:
    async def scenario():
        registry = TimerRegistry()
        task = asyncio.create_task(asyncio.sleep(60))
        registry.install(1, task)

        assert registry.cancel(1) is True
        assert registry.cancel(1) is False
        assert registry.cancel(999) is False
        assert registry.is_armed(1) is False

    asyncio.run(scenario())


def test_release_only_removes_the_current_task() -> None:
    async def scenario():
        registry = TimerRegistry()
        old = asyncio.create_task(asyncio.sleep(60))
        new = asyncio.create_task(asyncio.sleep(60))
        registry.install(3, old)
        registry.install(3, new)

        assert registry.release(3, old) is False
        assert registry.get(3) is new
        assert registry.release(3, new) is True
        assert registry.get(3) is None

        new.cancel()

    asyncio.run(scenario())


def test_timer_does_not_cancel_itself() -> None:
    async def scenario():
        registry = TimerRegistry()
        reached = []

        async def timer():
            registry.cancel(5)
            await asyncio.sleep(0)
            reached.append(True)

        task = asyncio.create_task(timer())
        registry.install(5, task)
        await task

        assert reached == [True]

    asyncio.run(scenario())
