from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from guild_store import GuildConfig

GUILD_ID = 111111111111111111
CHANNEL_ID = 222222222222222222
BOT_ID = 999999999999999999


class FakeStore:
    def __init__(self, config: GuildConfig | None = None) -> None:
        self.config = config or GuildConfig.default(GUILD_ID, "Test Guild")
        self.warnings: list[dict] = []
        self.infractions: list[dict] = []
        self.usage: list[tuple[int, int]] = []
        self.default_prefix = "!"
        self.profile = None

    async def find_guild_config(self, guild_id: int, guild_name: str = "") -> GuildConfig:
        return self.config

    async def update_guild_config(self, guild_id: int, **updates) -> GuildConfig:
        if "bad_words" in updates:
            updates["bad_words"] = tuple(updates["bad_words"])
        self.config = replace(self.config, **updates)
        return self.config

    async def ensure_guild(self, guild_id: int, guild_name: str = "") -> None:
        return None

    async def add_warning(self, guild_id, user_id, moderator_id, reason, expires_at=None):
        self.warnings.append(
            {"guild_id": guild_id, "user_id": user_id, "moderator_id": moderator_id, "reason": reason}
        )
        return len(self.warnings), len(self.warnings), len(self.warnings)

    async def log_infraction(self, guild_id, user_id, actor_id, action, reason, **kwargs):
        self.infractions.append(
            {"guild_id": guild_id, "user_id": user_id, "action": action, "reason": reason, **kwargs}
        )
        return len(self.infractions)

    async def find_user_profile(self, guild_id, user_id):
        return self.profile

    async def increment_command_usage(self, guild_id, user_id, username):
        self.usage.append((guild_id, user_id))


def make_member(user_id: int = 1, *, permissions: discord.Permissions | None = None, bot: bool = False):
    return SimpleNamespace(
        id=user_id,
        bot=bot,
        mention=f"<@{user_id}>",
        guild_permissions=permissions if permissions is not None else discord.Permissions.none(),
        edit=AsyncMock(),
        kick=AsyncMock(),
        ban=AsyncMock(),
        send=AsyncMock(),
    )


def make_guild(guild_id: int = GUILD_ID, channels: dict | None = None):
    channels = channels or {}
    return SimpleNamespace(
        id=guild_id,
        name="Test Guild",
        me=None,
        owner_id=1,
        get_channel=lambda channel_id: channels.get(channel_id),
        fetch_channel=AsyncMock(side_effect=RuntimeError("not cached")),
    )


def make_message(content: str, *, author=None, guild=None, message_id: int = 333):
    return SimpleNamespace(
        id=message_id,
        content=content,
        author=author or make_member(),
        guild=guild if guild is not None else make_guild(),
        channel=SimpleNamespace(id=CHANNEL_ID, send=AsyncMock()),
        delete=AsyncMock(),
        reply=AsyncMock(),
    )


def make_interaction(name: str, *, user=None, guild=None, options: dict | None = None, done: bool = False):
    return SimpleNamespace(
        type=discord.InteractionType.application_command,
        data={"name": name},
        user=user or make_member(),
        guild=guild if guild is not None else make_guild(),
        channel=SimpleNamespace(id=CHANNEL_ID, send=AsyncMock()),
        namespace=SimpleNamespace(**(options or {})),
        response=SimpleNamespace(
            is_done=MagicMock(return_value=done),
            send_message=AsyncMock(),
        ),
        followup=SimpleNamespace(send=AsyncMock()),
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def bot(store):
    return SimpleNamespace(user=SimpleNamespace(id=BOT_ID), latency=0.042, store=store)
