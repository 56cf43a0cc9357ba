import logging

import pytest

from blockwatch.errors import DeltaTransportFailure, MissingBlock, StartingPointUnavailable
from blockwatch.poller import BlockPoller
from blockwatch.scheduler import Continue, FixedRateScheduler, Stop
from blockwatch.watcher import BlockWatcher

from stubs import FlakyTransport, StubLedger


def _watcher(ledger: StubLedger, start: int, **kwargs) -> tuple[BlockWatcher, list[int]]:
    emitted: list[int] = []
    watcher = BlockWatcher(
        BlockPoller(ledger, start),
        FixedRateScheduler(0.01),
        lambda block: emitted.append(block.height),
        **kwargs,
    )
    return watcher, emitted


@pytest.mark.asyncio
async def test_step_emits_blocks_in_height_order() -> None:
    ledger = StubLedger(tip=5, reverse_completion=True)
    watcher, emitted = _watcher(ledger, 1)

    assert await watcher.step() == Continue()
    assert emitted == [2, 3, 4, 5]
    assert watcher.blocks_emitted == 4


@pytest.mark.asyncio
async def test_step_logs_and_continues_on_recoverable_error(caplog) -> None:
    ledger = StubLedger(tip=3)
    ledger.height_error = FlakyTransport("connection refused")
    watcher, emitted = _watcher(ledger, 0)

    caplog.set_level(logging.WARNING)
    assert await watcher.step() == Continue()
    assert watcher.consecutive_failures == 1
    assert "Poll failed at height 0" in caplog.text

    ledger.height_error = None
    assert await watcher.step() == Continue()
    assert emitted == [1, 2, 3]
    assert watcher.consecutive_failures == 0


@pytest.mark.asyncio
async def test_step_gives_up_after_consecutive_failures() -> None:
    ledger = StubLedger(tip=3)
    ledger.overrides[2] = None
    watcher, _ = _watcher(ledger, 0, max_consecutive_failures=1)

    assert await watcher.step() == Continue()
    with pytest.raises(MissingBlock):
        await watcher.step()


@pytest.mark.asyncio
async def test_starting_point_unavailable_is_fatal() -> None:
    ledger = StubLedger(tip=3)
    watcher, _ = _watcher(ledger, 10)

    with pytest.raises(StartingPointUnavailable):
        await watcher.run()


@pytest.mark.asyncio
async def test_run_stops_once_target_height_is_reported() -> None:
    ledger = StubLedger(tip=4)
    watcher, emitted = _watcher(ledger, 0, until_height=6)
    polls = 0
    original_poll = watcher.poller.poll_once

    async def growing_poll(timeout=None):
        nonlocal polls
        polls += 1
        ledger.tip = min(ledger.tip + 1, 8)
        return await original_poll(timeout)

    watcher.poller.poll_once = growing_poll

    reason = await watcher.run()

    assert reason == "reached height 6"
    assert emitted == [1, 2, 3, 4, 5, 6]
    assert polls == 2


@pytest.mark.asyncio
async def test_stop_ends_run_with_reason() -> None:
    ledger = StubLedger(tip=0)
    watcher, _ = _watcher(ledger, 0)

    async def stop_after_first_poll():
        watcher.stop("operator")
        return Continue()

    watcher.step = stop_after_first_poll

    assert await watcher.run() == "operator"


@pytest.mark.asyncio
async def test_custom_fatal_errors_propagate() -> None:
    ledger = StubLedger(tip=2)
    ledger.height_error = FlakyTransport("down")
    watcher, _ = _watcher(ledger, 0, fatal_errors=(DeltaTransportFailure,))

    with pytest.raises(DeltaTransportFailure):
        await watcher.step()


@pytest.mark.asyncio
async def test_step_returns_stop_when_already_at_target() -> None:
    watcher, _ = _watcher(StubLedger(tip=9), 9, until_height=9)

    assert await watcher.step() == Stop("reached height 9")
