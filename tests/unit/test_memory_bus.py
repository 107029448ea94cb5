import asyncio

import pytest

from core.schemas.messages import StreamMessage
from core.schemas.topics import TopicNames
from core.streaming.error_handling import DeliveryPolicy
from core.streaming.memory_bus import InMemoryMessageBus
from core.utils.exceptions import InvalidConfigurationError, PublishError


def _bus(**kwargs):
    return InMemoryMessageBus(
        partition_counts={"orders": 2, "replies": 1},
        delivery_policy=DeliveryPolicy(max_attempts=2, base_delay=0.001, max_delay=0.005),
        shutdown_timeout=1.0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_publish_to_explicit_partition_stamps_offsets():
    bus = _bus()
    assert await bus.publish("orders", StreamMessage(body="a"), partition=1) == 1
    assert await bus.publish("orders", StreamMessage(body="b"), partition=1) == 1

    log = bus.messages("orders", partition=1)
    assert [(m.body, m.stream, m.partition, m.offset) for m in log] == [
        ("a", "orders", 1, 0),
        ("b", "orders", 1, 1),
    ]
    assert bus.messages("orders", partition=0) == []


@pytest.mark.asyncio
async def test_keyless_publish_without_partition_round_robins():
    bus = _bus()
    partitions = [await bus.publish("orders", StreamMessage(body=str(i))) for i in range(4)]
    assert partitions == [0, 1, 0, 1]


@pytest.mark.asyncio
async def test_keyed_publish_without_partition_sticks_to_one_partition():
    bus = _bus()
    first = await bus.publish("orders", StreamMessage(body="a", key="5"))
    second = await bus.publish("orders", StreamMessage(body="b", key="5"))

    assert first == second
    assert [m.body for m in bus.messages("orders", partition=first)] == ["a", "b"]
    # keyed publishes do not advance the keyless rotation
    assert await bus.publish("orders", StreamMessage(body="c")) == 0


@pytest.mark.asyncio
async def test_publish_to_missing_partition_fails():
    bus = _bus()
    with pytest.raises(PublishError):
        await bus.publish("orders", StreamMessage(body="x"), partition=2)


def test_unknown_streams_default_to_one_partition():
    bus = _bus()
    assert bus.partition_count("orders") == 2
    assert bus.partition_count(TopicNames.get_dlq_topic("orders")) == 1


@pytest.mark.asyncio
async def test_delivery_is_ordered_within_partition_and_acked():
    bus = _bus()
    seen = []

    async def handler(message):
        seen.append((message.partition, message.body))

    bus.subscribe("orders", handler, group_id="g")
    await bus.start()
    try:
        for body in ["a1", "a2", "a3"]:
            await bus.publish("orders", StreamMessage(body=body), partition=0)
        await bus.publish("orders", StreamMessage(body="b1"), partition=1)
        await bus.join(timeout=2)
    finally:
        await bus.stop()

    assert [b for p, b in seen if p == 0] == ["a1", "a2", "a3"]
    assert [b for p, b in seen if p == 1] == ["b1"]
    assert bus.committed_offset("orders", "g", 0) == 3
    assert bus.committed_offset("orders", "g", 1) == 1


@pytest.mark.asyncio
async def test_partitions_are_processed_concurrently():
    bus = _bus()
    release = asyncio.Event()
    started = []

    async def handler(message):
        started.append(message.partition)
        await release.wait()

    bus.subscribe("orders", handler, group_id="g")
    await bus.start()
    try:
        await bus.publish("orders", StreamMessage(body="x"), partition=0)
        await bus.publish("orders", StreamMessage(body="y"), partition=1)
        for _ in range(100):
            if len(started) == 2:
                break
            await asyncio.sleep(0.005)
        assert sorted(started) == [0, 1]
        release.set()
        await bus.join(timeout=2)
    finally:
        await bus.stop()


@pytest.mark.asyncio
async def test_static_partition_subscription_only_sees_its_partitions():
    bus = _bus()
    seen = []

    async def handler(message):
        seen.append(message.partition)

    bus.subscribe("orders", handler, group_id="g", partitions=[1])
    await bus.start()
    try:
        await bus.publish("orders", StreamMessage(body="x"), partition=0)
        await bus.publish("orders", StreamMessage(body="y"), partition=1)
        await asyncio.sleep(0.05)
    finally:
        await bus.stop()

    assert seen == [1]
    assert bus.committed_offset("orders", "g", 0) == 0


@pytest.mark.asyncio
async def test_groups_consume_independently():
    bus = _bus()
    first, second = [], []

    async def handler_one(message):
        first.append(message.body)

    async def handler_two(message):
        second.append(message.body)

    bus.subscribe("replies", handler_one, group_id="one")
    bus.subscribe("replies", handler_two, group_id="two")
    await bus.start()
    try:
        await bus.publish("replies", StreamMessage(body="hello"))
        await bus.join(timeout=2)
    finally:
        await bus.stop()

    assert first == second == ["hello"]


@pytest.mark.asyncio
async def test_reply_to_publishes_handler_result_before_ack():
    bus = _bus()
    replies = []

    async def handler(message):
        return f"re: {message.body}"

    async def collect(message):
        replies.append(message.body)

    bus.subscribe("orders", handler, group_id="g", reply_to="replies")
    bus.subscribe("replies", collect, group_id="c")
    await bus.start()
    try:
        await bus.publish("orders", StreamMessage(body="ping"), partition=1)
        await bus.join(timeout=2)
    finally:
        await bus.stop()

    assert replies == ["re: ping"]


def test_overlapping_static_subscriptions_in_one_group_rejected():
    bus = _bus()

    async def handler(message):
        return None

    bus.subscribe("orders", handler, group_id="g", partitions=[0])
    bus.subscribe("orders", handler, group_id="other", partitions=[0])
    with pytest.raises(InvalidConfigurationError):
        bus.subscribe("orders", handler, group_id="g", partitions=[0, 1])


@pytest.mark.asyncio
async def test_subscription_to_missing_partition_fails_at_start():
    bus = _bus()

    async def handler(message):
        return None

    bus.subscribe("orders", handler, group_id="g", partitions=[5])
    with pytest.raises(InvalidConfigurationError):
        await bus.start()


@pytest.mark.asyncio
async def test_subscribe_after_start_rejected():
    bus = _bus()
    await bus.start()
    try:
        with pytest.raises(RuntimeError):
            bus.subscribe("orders", lambda m: None, group_id="g")
    finally:
        await bus.stop()


@pytest.mark.asyncio
async def test_stop_lets_in_flight_delivery_finish():
    bus = _bus()
    entered = asyncio.Event()
    finished = []

    async def slow(message):
        entered.set()
        await asyncio.sleep(0.05)
        finished.append(message.body)

    bus.subscribe("orders", slow, group_id="g", partitions=[0])
    await bus.start()
    await bus.publish("orders", StreamMessage(body="a"), partition=0)
    await bus.publish("orders", StreamMessage(body="b"), partition=0)
    await asyncio.wait_for(entered.wait(), timeout=1)
    await bus.stop()

    assert finished == ["a"]
    assert bus.committed_offset("orders", "g", 0) == 1
