import asyncio

from hookscheduler.services.notification_service import NotificationBroadcaster


def test_publish_reaches_only_the_owners_subscribers() -> None:
    async def scenario():
        broadcaster = NotificationBroadcaster(max_queue_size=10)
        alice_one = broadcaster.subscribe("alice")
        alice_two = broadcaster.subscribe("alice")
        bob = broadcaster.subscribe("bob")

        delivered = await broadcaster.publish("alice", {"type": "schedule-executed", "scheduleId": "1"})

        assert delivered == 2
        assert (await alice_one.get(timeout=1))["scheduleId"] == "1"
        assert (await alice_two.get(timeout=1))["type"] == "schedule-executed"
        assert await bob.get(timeout=0.01) is None

    asyncio.run(scenario())


def test_publish_without_subscribers_is_a_no_op() -> None:
    async def scenario():
        broadcaster = NotificationBroadcaster(max_queue_size=10)
        assert await broadcaster.publish("nobody", {"type": "schedule-updated"}) == 0

    asyncio.run(scenario())


def test_closed_subscribers_are_pruned_on_publish() -> None:
    async def scenario():
        broadcaster = NotificationBroadcaster(max_queue_size=10)
        stale = broadcaster.subscribe("alice")
        live = broadcaster.subscribe("alice")
        stale.close()

        delivered = await broadcaster.publish("alice", {"type": "schedule-updated"})

        assert delivered == 1
        assert broadcaster.subscriber_count("alice") == 1
        assert await live.get(timeout=1) == {"type": "schedule-updated"}

    asyncio.run(scenario())


def test_full_queue_drops_messages() -> None:
    async def scenario():
        broadcaster = NotificationBroadcaster(max_queue_size=1)
        slow = broadcaster.subscribe("alice")

        assert await broadcaster.publish("alice", {"n": 1}) == 1
        assert await broadcaster.publish("alice", {"n": 2}) == 0
        assert await slow.get(timeout=1) == {"n": 1}

    asyncio.run(scenario())


def test_unsubscribe_and_close_all() -> None:
    broadcaster = NotificationBroadcaster(max_queue_size=10)
    first = broadcaster.subscribe("alice")
    second = broadcaster.subscribe("bob")

    broadcaster.unsubscribe(first)
    assert first.closed is True
    assert broadcaster.subscriber_count() == 1

    broadcaster.close_all()
    assert second.closed is True
    assert broadcaster.subscriber_count() == 0
