"""
Tests for the outbound request pacer.
"""

import pytest

from service_market_gateway.app.ratelimit import Pacer


@pytest.fixture
def pacer(fake_clock):
    return Pacer(1.1, clock=fake_clock, sleep=fake_clock.sleeper("pace"))


@pytest.mark.asyncio
async def test_first_turn_is_immediate(pacer, fake_clock):
    await pacer.wait_turn()

    assert fake_clock.sleeps["pace"] == []
    assert pacer.last_request_at == fake_clock.now


@pytest.mark.asyncio
async def test_back_to_back_turns_are_spaced(pacer, fake_clock):
    """Test consecutive turns are at least min_interval apart."""
    stamps = []
    for _ in range(4):
        await pacer.wait_turn()
        stamps.append(fake_clock.now)

    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    assert all(gap >= 1.1 - 1e-9 for gap in gaps)
    assert fake_clock.sleeps["pace"] == pytest.approx([1.1, 1.1, 1.1])


@pytest.mark.asyncio
async def test_only_waits_for_the_remainder(pacer, fake_clock):
    await pacer.wait_turn()
    fake_clock.advance(0.6)

    await pacer.wait_turn()

    assert fake_clock.sleeps["pace"] == pytest.approx([0.5])


@pytest.mark.asyncio
async def test_no_wait_when_interval_already_elapsed(pacer, fake_clock):
    await pacer.wait_turn()
    fake_clock.advance(5)

    await pacer.wait_turn()

    assert fake_clock.sleeps["pace"] == []
