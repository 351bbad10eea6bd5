import logging
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import discord

from core.cooldowns import monotonic_ms

LOGGER = logging.getLogger("guildhall.automod")

SPAM_WINDOW_MS = 5000
CAPS_MIN_LENGTH = 10
MUTE_DURATION = timedelta(minutes=10)
MAX_TRACKED_WINDOWS = 10_000

RULE_SPAM = "spam"
RULE_BAD_WORDS = "bad_words"
RULE_CAPS = "caps"

RULE_REASONS = {
    RULE_SPAM: "Spam detected",
    RULE_BAD_WORDS: "Inappropriate language",
    RULE_CAPS: "Excessive capitalization",
}


@dataclass(frozen=True)
class AutoModRule:
    enabled: bool = False
    spam_limit: int = 5
    caps_threshold: int = 70
    bad_words: frozenset[str] = field(default_factory=frozenset)
    punishment: str = "warn"

    @classmethod
    def from_config(cls, config: Any) -> "AutoModRule":
        return cls(
            enabled=bool(config.moderation_enabled and config.automod_enabled),
            spam_limit=int(config.automod_spam_limit),
            caps_threshold=int(config.automod_caps_limit),
            bad_words=frozenset(word.lower() for word in config.bad_words if word),
            punishment=config.automod_punishment,
        )


@dataclass(frozen=True)
class AutoModMatch:
    rule: str
    reason: str


def contains_bad_word(text: str, bad_words: frozenset[str]) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in bad_words)


def caps_percentage(text: str) -> float:
    letters = [char for char in text if char.isalpha()]
    if not letters:
        return 0.0
    upper = sum(1 for char in letters if char.isupper())
    return upper / len(letters) * 100


def is_excessive_caps(text: str, threshold: int) -> bool:
    if len(text) < CAPS_MIN_LENGTH:
        return False
    return caps_percentage(text) > threshold


class AutoModFilter:
    """Spam, bad-word and caps checks run on every guild message before dispatch."""

    def __init__(self, bot: Any, store: Any, clock: Callable[[], float] = monotonic_ms) -> None:
        self.bot = bot
        self.store = store
        self._clock = clock
        self._windows: dict[tuple[int, int], deque[float]] = defaultdict(deque)

    def _is_spam(self, key: tuple[int, int], limit: int, now: float) -> bool:
        window = self._windows[key]
        window.append(now)
        while window and now - window[0] >= SPAM_WINDOW_MS:
            window.popleft()
        if len(self._windows) > MAX_TRACKED_WINDOWS:
            self._drop_idle_windows(now)
        return len(window) > limit

    def _drop_idle_windows(self, now: float) -> None:
        self._windows = defaultdict(
            deque,
            {
                key: window
                for key, window in self._windows.items()
                if window and now - window[-1] < SPAM_WINDOW_MS
            },
        )

    def recent_messages(self, guild_id: int, user_id: int) -> tuple[float, ...]:
        return tuple(self._windows.get((guild_id, user_id), ()))

    def evaluate(self, message: Any, rule: AutoModRule, now: float | None = None) -> AutoModMatch | None:
        if not rule.enabled:
            return None

        current = self._clock() if now is None else now
        content = message.content or ""
        key = (message.guild.id, message.author.id)

        if self._is_spam(key, rule.spam_limit, current):
            return AutoModMatch(RULE_SPAM, RULE_REASONS[RULE_SPAM])
        if rule.bad_words and contains_bad_word(content, rule.bad_words):
            return AutoModMatch(RULE_BAD_WORDS, RULE_REASONS[RULE_BAD_WORDS])
        if is_excessive_caps(content, rule.caps_threshold):
            return AutoModMatch(RULE_CAPS, RULE_REASONS[RULE_CAPS])
        return None

    async def handle(self, message: Any, config: Any, now: float | None = None) -> bool:
        rule = AutoModRule.from_config(config)
        match = self.evaluate(message, rule, now)
        if match is None:
            return False

        LOGGER.info(
            "AutoMod match rule=%s guild=%s channel=%s author=%s",
            match.rule,
            message.guild.id,
            message.channel.id,
            message.author.id,
        )
        deleted = await self._delete_message(message)
        await self._apply_punishment(message, rule.punishment, match)
        await self._log_action(message, config, rule.punishment, match, deleted)
        return True

    def _actor_id(self, message: Any) -> int:
        bot_user = getattr(self.bot, "user", None)
        if bot_user is not None:
            return bot_user.id
        me = getattr(message.guild, "me", None)
        return me.id if me is not None else message.author.id

    async def _delete_message(self, message: Any) -> bool:
        try:
            await message.delete()
            return True
        except Exception as exc:
            LOGGER.warning(
                "Could not delete AutoMod message. guild=%s channel=%s author=%s",
                message.guild.id,
                message.channel.id,
                message.author.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return False

    async def _apply_punishment(self, message: Any, punishment: str, match: AutoModMatch) -> None:
        member = message.author
        guild = message.guild
        reason = f"Auto-moderation: {match.reason}"
        try:
            if punishment == "mute":
                timed_out_until = discord.utils.utcnow() + MUTE_DURATION
                await member.edit(timed_out_until=timed_out_until, reason=reason)
            elif punishment == "kick":
                await member.kick(reason=reason)
            elif punishment == "ban":
                await member.ban(reason=reason, delete_message_days=1)
            else:
                warning_id, _total, active = await self.store.add_warning(
                    guild_id=guild.id,
                    user_id=member.id,
                    moderator_id=self._actor_id(message),
                    reason=reason,
                )
                await self._send_notice(
                    message,
                    f"{member.mention}, your message was removed by AutoMod "
                    f"and you received a warning (#{warning_id}, {active} active).",
                )
        except Exception as exc:
            LOGGER.error(
                "AutoMod punishment '%s' failed. guild=%s author=%s",
                punishment,
                guild.id,
                member.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def _send_notice(self, message: Any, content: str) -> None:
        try:
            await message.channel.send(content, delete_after=10)
        except (discord.Forbidden, discord.HTTPException):
            LOGGER.warning("Could not send AutoMod notice. channel=%s", message.channel.id)

    async def _log_action(
        self,
        message: Any,
        config: Any,
        punishment: str,
        match: AutoModMatch,
        deleted: bool,
    ) -> None:
        guild = message.guild
        member = message.author
        reason = f"Auto-moderation: {match.reason}"
        try:
            await self.store.log_infraction(
                guild_id=guild.id,
                user_id=member.id,
                actor_id=self._actor_id(message),
                action=punishment,
                reason=reason,
                duration="10m" if punishment == "mute" else None,
                metadata={
                    "rule": match.rule,
                    "channel_id": message.channel.id,
                    "message_id": message.id,
                    "deleted": deleted,
                },
            )
        except Exception as exc:
            LOGGER.error(
                "Could not store the AutoMod infraction. guild=%s author=%s",
                guild.id,
                member.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

        try:
            await send_modlog(
                guild,
                config,
                title="AutoMod triggered",
                description=(
                    f"User: {member.mention} (`{member.id}`)\n"
                    f"Rule: `{match.rule}`\n"
                    f"Action: `{punishment}`\n"
                    f"Reason: {reason}"
                ),
                color=discord.Color.red(),
            )
        except Exception as exc:
            LOGGER.error(
                "Could not send the AutoMod mod-log entry. guild=%s",
                guild.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )


async def send_modlog(
    guild: Any,
    config: Any,
    *,
    title: str,
    description: str,
    color: discord.Color,
) -> None:
    channel_id = config.mod_log_channel_id
    if channel_id is None:
        return

    channel = guild.get_channel(channel_id)
    if channel is None:
        try:
            channel = await guild.fetch_channel(channel_id)
        except (discord.Forbidden, discord.HTTPException, discord.NotFound):
            LOGGER.warning("Mod-log channel not reachable. guild=%s channel=%s", guild.id, channel_id)
            return

    embed = discord.Embed(title=title, description=description, color=color)
    embed.timestamp = discord.utils.utcnow()
    try:
        await channel.send(embed=embed)
    except (discord.Forbidden, discord.HTTPException):
        LOGGER.warning("Failed to send mod-log. guild=%s channel=%s", guild.id, channel_id)
