import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config.settings import ExecutorSettings, ExecutorVariant, ConfirmationOutput
from core.schemas.messages import ACCOUNT_HEADER, StreamMessage, TradeRequest
from core.schemas.topics import TopicNames
from core.streaming.error_handling import HEADER_EXCEPTION_FQCN
from core.utils.exceptions import InvalidHeaderError, MissingHeaderError, PublishError
from services.trade_executor.service import TradeExecutorService


def _settings(test_settings, **executor):
    return test_settings.model_copy(update={"executor": ExecutorSettings(**executor)})


def _trade(body, account=None, partition=1):
    headers = {} if account is None else {ACCOUNT_HEADER: account}
    return StreamMessage(body=body, headers=headers).delivered(TopicNames.TRADES, partition, 0)


@pytest.mark.asyncio
async def test_header_propagating_publishes_confirmation_with_account(test_settings, memory_bus):
    service = TradeExecutorService(test_settings, memory_bus)

    await service.handle_trade(_trade("Trade 100", account=3))

    [confirmation] = memory_bus.messages(TopicNames.TRADE_CONFIRMATIONS)
    assert confirmation.body == "[1] Trade 100 (account: 3) done"
    assert confirmation.key == "3"
    assert confirmation.headers == {}


@pytest.mark.asyncio
async def test_log_output_does_not_publish(test_settings, memory_bus):
    service = TradeExecutorService(
        _settings(test_settings, confirmation_output=ConfirmationOutput.LOG), memory_bus)
    service.logger = MagicMock()

    await service.handle_trade(_trade("Trade 5", account="4"))

    service.logger.info.assert_called_once_with("[1] Trade 5 (account: 4) done")
    assert memory_bus.messages(TopicNames.TRADE_CONFIRMATIONS) == []


@pytest.mark.asyncio
async def test_reply_binding_returns_confirmation_without_account(test_settings, memory_bus):
    service = TradeExecutorService(
        _settings(test_settings, variant=ExecutorVariant.REPLY_BINDING), memory_bus)

    assert service.subscription.reply_to == TopicNames.TRADE_CONFIRMATIONS
    assert await service.handle_trade_reply(_trade("Trade 100", account=3)) == "[1] Trade 100 done"
    assert await service.handle_trade_reply(_trade("Trade 101")) == "[2] Trade 101 done"


@pytest.mark.asyncio
async def test_header_errors_raised_before_sequence_advances(test_settings, memory_bus):
    service = TradeExecutorService(test_settings, memory_bus)

    with pytest.raises(MissingHeaderError):
        await service.handle_trade(_trade("Trade 1"))
    with pytest.raises(InvalidHeaderError):
        await service.handle_trade(_trade("Trade 2", account="three"))
    with pytest.raises(InvalidHeaderError):
        await service.handle_trade(_trade("Trade 2", account=3.7))
    with pytest.raises(InvalidHeaderError):
        await service.handle_trade(_trade("Trade 2", account="3.7"))
    assert service.sequence.value == 0
    assert memory_bus.messages(TopicNames.TRADE_CONFIRMATIONS) == []

    await service.handle_trade(_trade("Trade 3", account=1))
    assert memory_bus.messages(TopicNames.TRADE_CONFIRMATIONS)[0].body == "[1] Trade 3 (account: 1) done"


def test_subscribes_to_owned_partitions_in_executor_group(test_settings, memory_bus):
    service = TradeExecutorService(_settings(test_settings, instance_index=1, instance_count=2), memory_bus)

    assert service.partitions == [1]
    assert service.subscription.stream == TopicNames.TRADES
    assert service.subscription.partitions == [1]
    assert service.subscription.group_id == "test-trade-partitioning.trade_executor"
    assert service.subscription.reply_to is None


@pytest.mark.asyncio
async def test_missing_header_is_dead_lettered_without_confirmation(test_settings, memory_bus):
    service = TradeExecutorService(test_settings, memory_bus)
    await memory_bus.start()
    try:
        await memory_bus.publish(TopicNames.TRADES, StreamMessage(body="Trade 9"), partition=0)
        await memory_bus.join(timeout=2)
    finally:
        await memory_bus.stop()

    assert memory_bus.messages(TopicNames.TRADE_CONFIRMATIONS) == []
    [dead] = memory_bus.messages(TopicNames.get_dlq_topic(TopicNames.TRADES))
    assert dead.body == "Trade 9"
    assert dead.headers[HEADER_EXCEPTION_FQCN].endswith("MissingHeaderError")
    assert service.sequence.value == 0
    assert memory_bus.committed_offset(TopicNames.TRADES, service.subscription.group_id, 0) == 1


@pytest.mark.asyncio
async def test_missing_header_stays_unacked_when_dead_letter_disabled(test_settings, memory_bus):
    memory_bus.delivery_policy.dead_letter_enabled = False
    service = TradeExecutorService(test_settings, memory_bus)

    await memory_bus.start()
    try:
        await memory_bus.publish(TopicNames.TRADES, StreamMessage(body="Trade 9"), partition=0)
        await memory_bus.publish(TopicNames.TRADES, TradeRequest(body="Trade 10", account=2).to_message(), partition=0)
        await asyncio.sleep(0.05)
    finally:
        await memory_bus.stop()

    group = service.subscription.group_id
    assert memory_bus.committed_offset(TopicNames.TRADES, group, 0) == 0
    assert memory_bus.messages(TopicNames.get_dlq_topic(TopicNames.TRADES)) == []
    # Partition order holds: the trade behind the poison message is not executed
    assert memory_bus.messages(TopicNames.TRADE_CONFIRMATIONS) == []


@pytest.mark.asyncio
async def test_failed_confirmation_publish_consumes_its_sequence_number(test_settings):
    bus = MagicMock()
    bus.publish = AsyncMock(side_effect=[PublishError("broker down", stream=TopicNames.TRADE_CONFIRMATIONS), 0])
    service = TradeExecutorService(test_settings, bus)

    with pytest.raises(PublishError):
        await service.handle_trade(_trade("Trade 7", account=3))
    # Redelivery of the same trade takes the next number
    await service.handle_trade(_trade("Trade 7", account=3))

    bodies = [c.args[1].body for c in bus.publish.await_args_list]
    assert bodies == ["[1] Trade 7 (account: 3) done", "[2] Trade 7 (account: 3) done"]
    assert service.sequence.value == 2
