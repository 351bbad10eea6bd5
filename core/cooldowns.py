import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

LOGGER = logging.getLogger("guildhall.cooldowns")


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass(frozen=True)
class CooldownCheck:
    allowed: bool
    remaining_seconds: float = 0.0


class CooldownTracker:
    """Per-command, per-user minimum interval between invocations.

    Entries are removed by a deferred cleanup once their cooldown elapses,
    or by a sweep on the next record when no event loop is running. Checks
    only compare timestamps, so a missed cleanup never blocks anyone.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self._timestamps: dict[str, dict[int, float]] = {}
        self._cooldowns: dict[str, int] = {}

    def check_and_reserve(
        self,
        command_name: str,
        user_id: int,
        cooldown_seconds: int,
        now: float | None = None,
    ) -> CooldownCheck:
        current = self._clock() if now is None else now
        last_invocation = self._timestamps.get(command_name, {}).get(user_id)
        if last_invocation is None:
            return CooldownCheck(allowed=True)

        expiration = last_invocation + cooldown_seconds * 1000
        if current < expiration:
            return CooldownCheck(allowed=False, remaining_seconds=(expiration - current) / 1000)
        return CooldownCheck(allowed=True)

    def record(
        self,
        command_name: str,
        user_id: int,
        now: float | None = None,
        cooldown_seconds: int | None = None,
    ) -> None:
        current = self._clock() if now is None else now
        self._timestamps.setdefault(command_name, {})[user_id] = current
        if cooldown_seconds is not None:
            self._cooldowns[command_name] = cooldown_seconds
        self._schedule_cleanup(command_name, user_id, current)

    def _schedule_cleanup(self, command_name: str, user_id: int, timestamp: float) -> None:
        cooldown_seconds = self._cooldowns.get(command_name)
        if cooldown_seconds is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.sweep(timestamp)
            return
        loop.call_later(cooldown_seconds, self._expire, command_name, user_id, timestamp)

    def _expire(self, command_name: str, user_id: int, timestamp: float) -> None:
        timestamps = self._timestamps.get(command_name)
        if timestamps is None:
            return
        # A newer invocation owns the entry now.
        if timestamps.get(user_id) != timestamp:
            return
        del timestamps[user_id]
        if not timestamps:
            del self._timestamps[command_name]

    def sweep(self, now: float | None = None) -> int:
        current = self._clock() if now is None else now
        removed = 0
        for command_name in list(self._timestamps):
            cooldown_ms = self._cooldowns.get(command_name, 0) * 1000
            timestamps = self._timestamps[command_name]
            expired = [
                user_id
                for user_id, last_invocation in timestamps.items()
                if current >= last_invocation + cooldown_ms
            ]
            for user_id in expired:
                del timestamps[user_id]
            removed += len(expired)
            if not timestamps:
                del self._timestamps[command_name]
        if removed:
            LOGGER.debug("Cooldown sweep removed %s entries.", removed)
        return removed

    def last_invocation(self, command_name: str, user_id: int) -> float | None:
        return self._timestamps.get(command_name, {}).get(user_id)

    def __len__(self) -> int:
        return sum(len(timestamps) for timestamps in self._timestamps.values())
