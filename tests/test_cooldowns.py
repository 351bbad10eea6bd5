import asyncio

import pytest

from core.cooldowns import CooldownTracker


def test_first_invocation_is_allowed():
    tracker = CooldownTracker(clock=lambda: 0.0)

    check = tracker.check_and_reserve("ping", 1, 3, now=1_000.0)

    assert check.allowed
    assert check.remaining_seconds == 0.0


def test_blocked_until_cooldown_elapses():
    tracker = CooldownTracker()
    tracker.record("ping", 1, now=10_000.0, cooldown_seconds=3)

    blocked = tracker.check_and_reserve("ping", 1, 3, now=12_999.0)
    assert not blocked.allowed
    assert blocked.remaining_seconds == pytest.approx(0.001)

    early = tracker.check_and_reserve("ping", 1, 3, now=12_000.0)
    assert early.remaining_seconds == pytest.approx(1.0)

    assert tracker.check_and_reserve("ping", 1, 3, now=13_000.0).allowed
    assert tracker.check_and_reserve("ping", 1, 3, now=20_000.0).allowed


def test_check_does_not_mutate_state():
    tracker = CooldownTracker()

    for _ in range(3):
        assert tracker.check_and_reserve("ping", 1, 3, now=0.0).allowed
    assert len(tracker) == 0


def test_cooldowns_are_per_command_and_per_user():
    tracker = CooldownTracker()
    tracker.record("ping", 1, now=0.0, cooldown_seconds=3)

    assert tracker.check_and_reserve("roll", 1, 3, now=100.0).allowed
    assert tracker.check_and_reserve("ping", 2, 3, now=100.0).allowed
    assert not tracker.check_and_reserve("ping", 1, 3, now=100.0).allowed


def test_stale_entry_without_cleanup_never_blocks():
    tracker = CooldownTracker()
    tracker.record("ping", 1, now=0.0, cooldown_seconds=3)

    assert tracker.last_invocation("ping", 1) == 0.0
    assert tracker.check_and_reserve("ping", 1, 3, now=60_000.0).allowed


def test_sweep_removes_only_expired_entries():
    tracker = CooldownTracker()
    tracker.record("ping", 1, now=0.0, cooldown_seconds=3)
    tracker.record("ping", 2, now=2_500.0, cooldown_seconds=3)

    removed = tracker.sweep(now=3_000.0)

    assert removed == 1
    assert tracker.last_invocation("ping", 1) is None
    assert tracker.last_invocation("ping", 2) == 2_500.0


@pytest.mark.asyncio
async def test_deferred_cleanup_runs_on_event_loop():
    tracker = CooldownTracker()
    tracker.record("coinflip", 1, now=0.0, cooldown_seconds=0)

    await asyncio.sleep(0.01)

    assert tracker.last_invocation("coinflip", 1) is None
    assert len(tracker) == 0


def test_expired_timer_keeps_newer_invocation():
    tracker = CooldownTracker()
    tracker.record("coinflip", 1, now=0.0, cooldown_seconds=3)
    tracker.record("coinflip", 1, now=5.0)

    tracker._expire("coinflip", 1, 0.0)

    assert tracker.last_invocation("coinflip", 1) == 5.0


def test_record_without_event_loop_sweeps_expired_entries():
    tracker = CooldownTracker()
    tracker.record("ping", 1, now=0.0, cooldown_seconds=3)
    tracker.record("roll", 2, now=1_000.0, cooldown_seconds=3)

    tracker.record("roll", 3, now=3_500.0, cooldown_seconds=3)

    assert tracker.last_invocation("ping", 1) is None
    assert tracker.last_invocation("roll", 2) == 1_000.0
    assert len(tracker) == 2
