"""In-process stand-ins for the aiokafka clients, patched in with monkeypatch."""
import asyncio

import pytest
from types import SimpleNamespace
from typing import Dict, List


class FakeAIOKafkaProducer:
    # topic -> number of partitions the "broker" reports
    topic_partitions: Dict[str, int] = {}
    instances: List["FakeAIOKafkaProducer"] = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.flushed = False
        self.sent = []
        self.fail_with = None
        FakeAIOKafkaProducer.instances.append(self)

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def flush(self):
        self.flushed = True

    async def partitions_for(self, topic):
        return set(range(self.topic_partitions.get(topic, 0)))

    async def send_and_wait(self, topic, value=None, key=None, partition=None, headers=None):
        if self.fail_with:
            raise self.fail_with
        serializer = self.kwargs.get("value_serializer")
        self.sent.append({
            "topic": topic,
            "key": key,
            "value": serializer(value) if serializer else value,
            "partition": partition,
            "headers": headers or [],
        })
        return SimpleNamespace(topic=topic, partition=partition if partition is not None else 0,
                               offset=len(self.sent) - 1)


class FakeAIOKafkaConsumer:
    # topic -> records served to whichever consumer reads that topic
    records: Dict[str, list] = {}
    instances: List["FakeAIOKafkaConsumer"] = []

    def __init__(self, *topics, **kwargs):
        self.topics = topics
        self.kwargs = kwargs
        self.assigned = None
        self.started = False
        self.commits = []
        FakeAIOKafkaConsumer.instances.append(self)

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    def assign(self, partitions):
        self.assigned = list(partitions)

    async def commit(self, offsets=None):
        self.commits.append(dict(offsets or {}))

    def _topic(self):
        if self.assigned:
            return self.assigned[0].topic
        return self.topics[0]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        owned = {tp.partition for tp in self.assigned} if self.assigned else None
        for record in self.records.get(self._topic(), []):
            if owned is None or record.partition in owned:
                yield record
        # Idle like a live consumer until cancelled
        await asyncio.Event().wait()


def record(topic, partition, offset, value, key=None, headers=()):
    return SimpleNamespace(
        topic=topic,
        partition=partition,
        offset=offset,
        key=key.encode("utf-8") if key is not None else None,
        value=value.encode("utf-8"),
        headers=[(k, v.encode("utf-8")) for k, v in headers],
        timestamp=1700000000000,
    )


@pytest.fixture
def fake_kafka(monkeypatch):
    """Patch the aiokafka client classes used by the infrastructure wrappers."""
    from core.streaming.infrastructure import message_consumer as mc_mod
    from core.streaming.infrastructure import message_producer as mp_mod

    monkeypatch.setattr(FakeAIOKafkaProducer, "topic_partitions", {})
    monkeypatch.setattr(FakeAIOKafkaProducer, "instances", [])
    monkeypatch.setattr(FakeAIOKafkaConsumer, "records", {})
    monkeypatch.setattr(FakeAIOKafkaConsumer, "instances", [])
    monkeypatch.setattr(mp_mod, "AIOKafkaProducer", FakeAIOKafkaProducer, raising=True)
    monkeypatch.setattr(mc_mod, "AIOKafkaConsumer", FakeAIOKafkaConsumer, raising=True)
    return SimpleNamespace(producer=FakeAIOKafkaProducer, consumer=FakeAIOKafkaConsumer, record=record)
