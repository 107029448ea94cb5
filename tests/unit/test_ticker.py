import asyncio

import pytest

from core.utils.ticker import PeriodicTicker


@pytest.mark.asyncio
async def test_ticks_at_fixed_rate_until_stopped():
    ticks = []

    async def tick():
        ticks.append(asyncio.get_running_loop().time())

    ticker = PeriodicTicker(0.02, tick, name="test")
    ticker.start()
    await asyncio.sleep(0.11)
    await ticker.stop()

    assert 3 <= len(ticks) <= 7
    assert not ticker.is_running
    count = len(ticks)
    await asyncio.sleep(0.05)
    assert len(ticks) == count


@pytest.mark.asyncio
async def test_failing_tick_is_logged_and_next_tick_proceeds():
    calls = []

    async def tick():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("publish failed")

    ticker = PeriodicTicker(0.01, tick, name="test")
    ticker.start()
    await asyncio.sleep(0.05)
    await ticker.stop()

    assert len(calls) >= 2
    assert ticker.error_count == 1


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_tick():
    finished = []

    async def tick():
        await asyncio.sleep(0.05)
        finished.append(True)

    ticker = PeriodicTicker(1.0, tick, name="test")
    ticker.start()
    await asyncio.sleep(0.01)
    await ticker.stop()

    assert finished == [True]


def test_interval_must_be_positive():
    async def tick():
        return None

    with pytest.raises(ValueError):
        PeriodicTicker(0, tick)
