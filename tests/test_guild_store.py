import json
import time

import pytest

from guild_store import GuildConfig, GuildStore, MySQLConfig, UserProfile, _parse_word_list

MYSQL_CONFIG = MySQLConfig(
    host="localhost",
    port=3306,
    user="bot",
    password="",
    database="guildhall",
    pool_limit=5,
)


def settings_row(**overrides) -> dict:
    row = {
        "guild_id": 42,
        "guild_name": "Guild",
        "prefix": "?",
        "mod_log_channel_id": None,
        "moderation_enabled": 1,
        "automod_enabled": 1,
        "automod_spam_limit": 4,
        "automod_caps_limit": 60,
        "automod_punishment": "KICK",
        "bad_words": json.dumps(["Darn", "heck"]),
    }
    row.update(overrides)
    return row


def test_missing_row_uses_store_prefix():
    store = GuildStore(MYSQL_CONFIG, default_prefix="$")

    config = store._normalize_settings(None, 42)

    assert config == GuildConfig(guild_id=42, prefix="$")


def test_row_is_normalized():
    store = GuildStore(MYSQL_CONFIG)

    config = store._normalize_settings(settings_row(mod_log_channel_id="777"), 42)

    assert config.prefix == "?"
    assert config.mod_log_channel_id == 777
    assert config.automod_enabled is True
    assert config.automod_punishment == "kick"
    assert config.bad_words == ("darn", "heck")


def test_unknown_punishment_falls_back_to_warn():
    store = GuildStore(MYSQL_CONFIG)

    config = store._normalize_settings(settings_row(automod_punishment="exile", bad_words="{}"), 42)

    assert config.automod_punishment == "warn"
    assert config.bad_words == ()


def test_word_list_parsing_tolerates_bad_json():
    assert _parse_word_list(None) == []
    assert _parse_word_list("not json") == []
    assert _parse_word_list('["b", "A", " a ", ""]') == ["a", "b"]


def test_serialize_setting_values():
    serialize = GuildStore._serialize_setting_value

    assert serialize("bool", True) == 1
    assert serialize("int_or_none", None) is None
    assert serialize("prefix", " ?? ") == "??"
    assert serialize("punishment", "Mute") == "mute"
    assert json.loads(serialize("word_list", "Darn, heck,darn")) == ["darn", "heck"]
    with pytest.raises(ValueError):
        serialize("prefix", "a b")
    with pytest.raises(ValueError):
        serialize("punishment", "exile")


def test_database_name_is_validated():
    MYSQL_CONFIG.validate()
    with pytest.raises(ValueError):
        MySQLConfig("localhost", 3306, "bot", "", "guild-hall; DROP", 5).validate()


@pytest.mark.asyncio
async def test_cached_config_is_served_without_database():
    store = GuildStore(MYSQL_CONFIG)
    cached = GuildConfig(guild_id=42, prefix="%")
    store._settings_cache[42] = (time.monotonic(), cached)

    assert await store.find_guild_config(42) is cached


@pytest.mark.asyncio
async def test_unknown_setting_is_rejected_before_querying():
    store = GuildStore(MYSQL_CONFIG)
    store.ensure_guild = _noop_ensure

    with pytest.raises(ValueError, match="Unknown guild setting"):
        await store.update_guild_config(42, colour="blue")


async def _noop_ensure(guild_id, guild_name=""):
    return None


class FakeCursor:
    def __init__(self, rows) -> None:
        self.rows = list(rows)
        self.params = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, query, params=None):
        self.params.append(params)

    async def fetchone(self):
        return self.rows.pop(0)


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def cursor(self, *args):
        return self._cursor


class FakePool:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor

    def acquire(self):
        return FakeConnection(self._cursor)


@pytest.mark.asyncio
async def test_user_profile_combines_usage_and_warning_counts():
    store = GuildStore(MYSQL_CONFIG)
    cursor = FakeCursor(
        [
            {"guild_id": 42, "user_id": 7, "username": "tester", "commands_used": 12},
            {"total": 3, "active": 1},
        ]
    )
    store._pool = FakePool(cursor)

    profile = await store.find_user_profile(42, 7)

    assert profile == UserProfile(
        guild_id=42,
        user_id=7,
        username="tester",
        commands_used=12,
        warnings_total=3,
        warnings_active=1,
    )
    assert cursor.params == [(42, 7), (42, 7)]


@pytest.mark.asyncio
async def test_user_profile_missing_row():
    store = GuildStore(MYSQL_CONFIG)
    cursor = FakeCursor([None])
    store._pool = FakePool(cursor)

    assert await store.find_user_profile(42, 7) is None
    assert len(cursor.params) == 1
