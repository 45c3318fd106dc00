import asyncio

import pytest

from rds_ssm_connect.core.utils import StopSignal


@pytest.mark.asyncio
async def test_wait_times_out_without_signal():
    assert await StopSignal().wait(0.01) is False


@pytest.mark.asyncio
async def test_set_wakes_pending_waits():
    stop = StopSignal()
    waiters = [asyncio.create_task(stop.wait(3600)) for _ in range(3)]
    await asyncio.sleep(0)

    stop.set()

    assert await asyncio.wait_for(asyncio.gather(*waiters), timeout=1) == [True, True, True]
    assert stop.is_set()


@pytest.mark.asyncio
async def test_wait_returns_immediately_once_set():
    stop = StopSignal()
    stop.set()
    assert await stop.wait(3600) is True
