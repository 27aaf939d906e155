"""Tests for Topic: lazy advertise, publish ordering, subscription bookkeeping and teardown."""

import pytest

from topicbus.errors import NotConnectedError
from topicbus.topic import AdvertiseState, Topic
from tests.fixtures import ScriptedConnection, settle


@pytest.fixture
def conn():
    return ScriptedConnection()


@pytest.fixture
def topic(conn):
    return Topic(conn, "/ns/chatter", "std_msgs/String")


class TestConstruction:
    def test_name_and_type_are_exposed(self, conn):
        topic = Topic(conn, "/ns/chatter", "std_msgs/String")
        assert topic.name == "/ns/chatter"
        assert topic.message_type == "std_msgs/String"
        assert topic.connection is conn
        assert topic.publisher_state is AdvertiseState.UNADVERTISED

    @pytest.mark.parametrize("name,message_type", [("", "std_msgs/String"), ("/a", ""), (None, "t")])
    def test_rejects_empty_name_or_type(self, conn, name, message_type):
        with pytest.raises(ValueError):
            Topic(conn, name, message_type)


class TestAdvertise:
    @pytest.mark.asyncio
    async def test_repeated_advertise_issues_single_request(self, conn, topic):
        topic.advertise()
        topic.advertise()
        topic.advertise()
        await settle()
        assert conn.publisher_requests == [("/ns/chatter", "std_msgs/String")]
        assert topic.publisher_state is AdvertiseState.ADVERTISING

        publisher = conn.resolve_publisher()
        await settle()
        assert topic.publisher_state is AdvertiseState.ADVERTISED
        assert topic.publisher is publisher

        assert await topic.advertise() is publisher
        assert len(conn.publisher_requests) == 1

    @pytest.mark.asyncio
    async def test_failed_advertise_resolves_none_and_resets_state(self, conn, topic):
        errors = []
        conn.on("error", errors.append)
        pending = topic.advertise()
        await settle()
        conn.reject_publisher()

        assert await pending is None
        assert topic.publisher_state is AdvertiseState.UNADVERTISED
        assert len(errors) == 1
        assert isinstance(errors[0], NotConnectedError)


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_advertises_lazily(self, conn, topic):
        result = topic.publish({"data": "hello"})
        await settle()
        assert len(conn.publisher_requests) == 1

        publisher = conn.resolve_publisher()
        assert await result is True
        assert publisher.sent == [{"data": "hello"}]

    @pytest.mark.asyncio
    async def test_publishes_before_resolution_keep_call_order(self, conn, topic):
        messages = [{"seq": i} for i in range(5)]
        results = [topic.publish(m) for m in messages]
        await settle()
        assert len(conn.publisher_requests) == 1

        publisher = conn.resolve_publisher()
        for result in results:
            assert await result is True
        assert publisher.sent == messages

    @pytest.mark.asyncio
    async def test_publish_when_advertised_forwards(self, conn, topic):
        topic.advertise()
        await settle()
        publisher = conn.resolve_publisher()
        await settle()

        assert await topic.publish({"data": "a"}) is True
        assert await topic.publish({"data": "b"}) is True
        assert publisher.sent == [{"data": "a"}, {"data": "b"}]
        assert len(conn.publisher_requests) == 1

    @pytest.mark.asyncio
    async def test_publish_after_failed_advertise_is_dropped_then_retried(self, conn, topic):
        first = topic.publish({"data": "lost"})
        await settle()
        conn.reject_publisher()
        assert await first is False

        second = topic.publish({"data": "kept"})
        await settle()
        assert len(conn.publisher_requests) == 2
        publisher = conn.resolve_publisher()
        assert await second is True
        assert publisher.sent == [{"data": "kept"}]

    @pytest.mark.asyncio
    async def test_transport_failure_is_not_raised(self, conn, topic):
        result = topic.publish({"data": "x"})
        await settle()
        conn.resolve_publisher(fail_sends=True)
        assert await result is False

    @pytest.mark.asyncio
    async def test_publisher_released_underneath_triggers_readvertise(self, conn, topic):
        topic.advertise()
        await settle()
        publisher = conn.resolve_publisher()
        await settle()

        await publisher.unadvertise()
        assert await topic.publish({"data": "x"}) is False
        assert topic.publisher_state is AdvertiseState.UNADVERTISED

        result = topic.publish({"data": "y"})
        await settle()
        assert len(conn.publisher_requests) == 2
        fresh = conn.resolve_publisher()
        assert await result is True
        assert fresh.sent == [{"data": "y"}]


class TestUnadvertise:
    @pytest.mark.asyncio
    async def test_unadvertise_without_publisher_is_noop(self, conn, topic):
        assert await topic.unadvertise() is False
        assert conn.publisher_requests == []

    @pytest.mark.asyncio
    async def test_double_unadvertise_calls_handle_once(self, conn, topic):
        topic.advertise()
        await settle()
        publisher = conn.resolve_publisher()
        await settle()

        first = topic.unadvertise()
        second = topic.unadvertise()
        assert await first is True
        assert await second is False
        assert publisher.unadvertise_calls == 1
        assert publisher.released
        assert topic.publisher_state is AdvertiseState.UNADVERTISED

    @pytest.mark.asyncio
    async def test_publish_after_unadvertise_readvertises(self, conn, topic):
        topic.advertise()
        topic.unadvertise()
        result = topic.publish({"data": "after"})
        await settle()
        assert len(conn.publisher_requests) == 2

        old = conn.resolve_publisher(0)
        new = conn.resolve_publisher(1)
        assert await result is True
        await settle()
        assert old.sent == []
        assert old.released
        assert new.sent == [{"data": "after"}]
        assert topic.publisher is new

    @pytest.mark.asyncio
    async def test_publish_issued_before_unadvertise_is_forwarded_first(self, conn, topic):
        result = topic.publish({"data": "first"})
        done = topic.unadvertise()
        await settle()
        publisher = conn.resolve_publisher()

        assert await result is True
        assert await done is True
        assert publisher.sent == [{"data": "first"}]
        assert not publisher.advertised

    @pytest.mark.asyncio
    async def test_unadvertise_of_failed_request_resolves_false(self, conn, topic):
        topic.advertise()
        done = topic.unadvertise()
        await settle()
        conn.reject_publisher()
        assert await done is False
        assert topic.publisher_state is AdvertiseState.UNADVERTISED


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_subscription_is_recorded_once_resolved(self, conn, topic):
        def cb(message):
            pass

        result = topic.subscribe(cb)
        await settle()
        assert conn.subscription_requests == [("/ns/chatter", cb)]
        assert topic.pending_subscription_count == 1
        assert not topic.has_subscription(cb)

        conn.resolve_subscription()
        assert await result is True
        assert topic.has_subscription(cb)
        assert topic.pending_subscription_count == 0

    @pytest.mark.asyncio
    async def test_double_subscribe_leaves_no_orphan(self, conn, topic):
        def cb(message):
            pass

        first = topic.subscribe(cb)
        second = topic.subscribe(cb)
        await settle()
        assert len(conn.subscription_requests) == 2

        conn.resolve_subscription(0)
        conn.resolve_subscription(1)
        assert await first is False
        assert await second is True
        await settle()

        assert topic.subscription_count == 1
        assert len(conn.live_subscriptions()) == 1
        assert conn.subscriptions[0].unsubscribe_calls == 1

    @pytest.mark.asyncio
    async def test_double_subscribe_resolved_out_of_order(self, conn, topic):
        def cb(message):
            pass

        topic.subscribe(cb)
        topic.subscribe(cb)
        await settle()
        newer = conn.resolve_subscription(1)
        older = conn.resolve_subscription(0)
        await settle()

        assert len(conn.live_subscriptions()) == 1
        assert newer.active
        assert not older.active

    @pytest.mark.asyncio
    async def test_resubscribe_replaces_resolved_handle(self, conn, topic):
        def cb(message):
            pass

        topic.subscribe(cb)
        await settle()
        old = conn.resolve_subscription()
        await settle()

        topic.subscribe(cb)
        await settle()
        new = conn.resolve_subscription()
        await settle()

        assert not old.active
        assert new.active
        assert topic.subscription_count == 1

    @pytest.mark.asyncio
    async def test_failed_subscribe_registers_nothing(self, conn, topic):
        errors = []
        conn.on("error", errors.append)

        def cb(message):
            pass

        result = topic.subscribe(cb)
        await settle()
        conn.reject_subscription()

        assert await result is False
        assert topic.subscription_count == 0
        assert topic.pending_subscription_count == 0
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_unhashable_callback_is_rejected(self, topic):
        with pytest.raises(TypeError):
            topic.subscribe([])


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_unsubscribe_all_clears_state(self, conn, topic):
        def cb1(message):
            pass

        def cb2(message):
            pass

        topic.subscribe(cb1)
        topic.subscribe(cb2)
        await settle()
        h1 = conn.resolve_subscription(0)
        h2 = conn.resolve_subscription(1)
        await settle()
        assert topic.subscription_count == 2

        await topic.unsubscribe()
        assert topic.subscription_count == 0
        assert h1.unsubscribe_calls == 1
        assert h2.unsubscribe_calls == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_with_nothing_is_noop(self, topic):
        def cb(message):
            pass

        assert await topic.unsubscribe() == []
        assert await topic.unsubscribe(cb) == []

    @pytest.mark.asyncio
    async def test_unsubscribe_one_keeps_others(self, conn, topic):
        def cb1(message):
            pass

        def cb2(message):
            pass

        topic.subscribe(cb1)
        topic.subscribe(cb2)
        await settle()
        h1 = conn.resolve_subscription(0)
        h2 = conn.resolve_subscription(1)
        await settle()

        await topic.unsubscribe(cb1)
        assert not h1.active
        assert h2.active
        assert topic.has_subscription(cb2)

    @pytest.mark.asyncio
    async def test_unsubscribe_while_pending_tears_down_on_resolve(self, conn, topic):
        def cb(message):
            pass

        result = topic.subscribe(cb)
        done = topic.unsubscribe(cb)
        await settle()
        handle = conn.resolve_subscription()

        assert await result is False
        await done
        assert handle.unsubscribe_calls == 1
        assert handle.released
        assert topic.subscription_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_unsubscribe_still_releases_handle(self, conn, topic):
        def cb(message):
            pass

        topic.subscribe(cb)
        await settle()
        handle = conn.resolve_subscription()
        await settle()

        topic.unsubscribe(cb).cancel()
        await settle()

        assert topic.subscription_count == 0
        assert handle.released
        assert conn.live_subscriptions() == []


class TestDelivery:
    @pytest.mark.asyncio
    async def test_callback_receives_until_unsubscribed(self, conn, topic):
        received = []

        def cb(message):
            received.append(message)

        topic.subscribe(cb)
        await settle()
        conn.resolve_subscription()
        await settle()

        conn.deliver("/ns/chatter", {"data": "one"})
        await settle()
        assert received == [{"data": "one"}]

        await topic.unsubscribe(cb)
        conn.deliver("/ns/chatter", {"data": "two"})
        await settle()
        assert received == [{"data": "one"}]

    @pytest.mark.asyncio
    async def test_scheduled_delivery_is_skipped_after_unsubscribe(self, conn, topic):
        received = []

        def cb(message):
            received.append(message)

        topic.subscribe(cb)
        await settle()
        conn.resolve_subscription()
        await settle()

        conn.deliver("/ns/chatter", {"data": "late"})
        topic.unsubscribe(cb)
        await settle()
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_delivery(self, conn, topic):
        received = []

        def cb(message):
            received.append(message)

        def broken(message):
            raise RuntimeError("boom")

        topic.subscribe(broken)
        topic.subscribe(cb)
        await settle()
        conn.resolve_subscription(0)
        conn.resolve_subscription(1)
        await settle()

        conn.deliver("/ns/chatter", {"data": "x"})
        await settle()
        assert received == [{"data": "x"}]

    @pytest.mark.asyncio
    async def test_coroutine_callback_is_scheduled(self, conn, topic):
        received = []

        async def cb(message):
            received.append(message)

        topic.subscribe(cb)
        await settle()
        conn.resolve_subscription()
        await settle()

        conn.deliver("/ns/chatter", {"data": "async"})
        await settle()
        assert received == [{"data": "async"}]


class TestClose:
    @pytest.mark.asyncio
    async def test_close_retires_handles_resolving_after_teardown(self, conn, topic):
        def cb(message):
            pass

        topic.publish({"data": "x"})
        topic.subscribe(cb)
        done = topic.close()
        await settle()

        publisher = conn.resolve_publisher()
        subscription = conn.resolve_subscription()
        await done
        await settle()

        assert publisher.sent == [{"data": "x"}]
        assert publisher.unadvertise_calls == 1
        assert subscription.unsubscribe_calls == 1
        assert conn.live_subscriptions() == []
        assert topic.publisher_state is AdvertiseState.UNADVERTISED

    @pytest.mark.asyncio
    async def test_cancelled_close_still_releases_handles(self, conn, topic):
        def cb(message):
            pass

        topic.publish({"data": "x"})
        topic.subscribe(cb)
        await settle()
        publisher = conn.resolve_publisher()
        subscription = conn.resolve_subscription()
        await settle()

        topic.close().cancel()
        await settle()

        assert publisher.released
        assert subscription.released
        assert conn.live_subscriptions() == []
