import pytest

from main import (
    load_mysql_config_from_env,
    looks_like_discord_token,
    parse_bool_env,
    parse_discord_id,
    parse_positive_int,
    parse_prefix,
    sanitize_env_value,
    sanitize_token,
)

FAKE_TOKEN = "MTIzNDU2Nzg5MDEyMzQ1Njc4.GaBcDe.abcdefghijklmnopqrstuvwxyz0123456789"


def test_sanitize_strips_quotes_and_blanks():
    assert sanitize_env_value('  "value" ') == "value"
    assert sanitize_env_value("''") is None
    assert sanitize_env_value(None) is None


def test_sanitize_token_drops_bot_prefix():
    assert sanitize_token(f"Bot {FAKE_TOKEN}") == FAKE_TOKEN
    assert sanitize_token("  ") is None
    assert looks_like_discord_token(FAKE_TOKEN)
    assert not looks_like_discord_token("not-a-token")


def test_parse_discord_id_accepts_mentions():
    assert parse_discord_id("123456789012345678") == 123456789012345678
    assert parse_discord_id("<#123456789012345678>") == 123456789012345678
    assert parse_discord_id("12345") is None
    assert parse_discord_id("") is None


def test_parse_positive_int():
    assert parse_positive_int(None, "DB_PORT", default=3306) == 3306
    assert parse_positive_int(" 3307 ", "DB_PORT", default=3306) == 3307
    with pytest.raises(RuntimeError):
        parse_positive_int("0", "DB_PORT", default=3306)
    with pytest.raises(RuntimeError):
        parse_positive_int("many", "DB_PORT", default=3306)


@pytest.mark.parametrize("raw", ["1", "true", "YES", "on", "enabled"])
def test_parse_bool_env_truthy(raw):
    assert parse_bool_env(raw, "FLAG") is True


def test_parse_bool_env_default_and_invalid():
    assert parse_bool_env(None, "FLAG", default=True) is True
    assert parse_bool_env("off", "FLAG", default=True) is False
    with pytest.raises(RuntimeError):
        parse_bool_env("maybe", "FLAG")


def test_parse_prefix():
    assert parse_prefix(None) == "!"
    assert parse_prefix("??") == "??"
    with pytest.raises(RuntimeError):
        parse_prefix("a b")
    with pytest.raises(RuntimeError):
        parse_prefix("toolongprefix")


def test_load_mysql_config_from_env(monkeypatch):
    monkeypatch.setenv("DB_USER", "bot")
    monkeypatch.setenv("DB_NAME", "guildhall")
    monkeypatch.setenv("DB_PORT", "3310")
    monkeypatch.delenv("DB_HOST", raising=False)
    monkeypatch.delenv("DB_PASSWORD", raising=False)
    monkeypatch.delenv("DB_POOL_LIMIT", raising=False)

    config = load_mysql_config_from_env()

    assert config.host == "localhost"
    assert config.port == 3310
    assert config.password == ""
    assert config.pool_limit == 10


def test_load_mysql_config_requires_user(monkeypatch):
    monkeypatch.delenv("DB_USER", raising=False)
    monkeypatch.setenv("DB_NAME", "guildhall")

    with pytest.raises(RuntimeError, match="DB_USER"):
        load_mysql_config_from_env()
