import json
import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

import aiomysql

DB_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")
PUNISHMENTS = ("warn", "mute", "kick", "ban")
DEFAULT_PREFIX = "!"

DEFAULT_GUILD_SETTINGS = {
    "guild_name": "",
    "prefix": DEFAULT_PREFIX,
    "mod_log_channel_id": None,
    "moderation_enabled": True,
    "automod_enabled": False,
    "automod_spam_limit": 5,
    "automod_caps_limit": 70,
    "automod_punishment": "warn",
    "bad_words": [],
}

SETTINGS_FIELD_TYPES: dict[str, str] = {
    "guild_name": "str",
    "prefix": "prefix",
    "mod_log_channel_id": "int_or_none",
    "moderation_enabled": "bool",
    "automod_enabled": "bool",
    "automod_spam_limit": "int",
    "automod_caps_limit": "int",
    "automod_punishment": "punishment",
    "bad_words": "word_list",
}


def _to_db_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_word_list(raw_value: str | None) -> list[str]:
    if not raw_value:
        return []
    try:
        decoded = json.loads(raw_value)
    except ValueError:
        return []
    if not isinstance(decoded, list):
        return []
    return _normalize_words(decoded)


def _normalize_words(words: Any) -> list[str]:
    cleaned = {str(word).strip().lower() for word in words if str(word).strip()}
    return sorted(cleaned)


@dataclass(frozen=True)
class MySQLConfig:
    host: str
    port: int
    user: str
    password: str
    database: str
    pool_limit: int

    def validate(self) -> None:
        if not DB_IDENTIFIER_RE.fullmatch(self.database):
            raise ValueError(
                "Invalid DB_NAME. Use only letters, digits and underscore (_)."
            )


@dataclass(frozen=True)
class GuildConfig:
    guild_id: int
    guild_name: str = ""
    prefix: str = DEFAULT_PREFIX
    mod_log_channel_id: int | None = None
    moderation_enabled: bool = True
    automod_enabled: bool = False
    automod_spam_limit: int = 5
    automod_caps_limit: int = 70
    automod_punishment: str = "warn"
    bad_words: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def default(cls, guild_id: int, guild_name: str = "") -> "GuildConfig":
        return cls(guild_id=guild_id, guild_name=guild_name)


@dataclass(frozen=True)
class UserProfile:
    guild_id: int
    user_id: int
    username: str
    commands_used: int = 0
    warnings_total: int = 0
    warnings_active: int = 0


class GuildStore:
    SETTINGS_CACHE_TTL = 30.0

    def __init__(self, config: MySQLConfig, default_prefix: str = DEFAULT_PREFIX) -> None:
        self.config = config
        self.default_prefix = default_prefix
        self._pool: aiomysql.Pool | None = None
        self._settings_cache: dict[int, tuple[float, GuildConfig]] = {}

    async def connect(self) -> None:
        if self._pool is not None:
            return

        self.config.validate()
        bootstrap = await aiomysql.connect(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            autocommit=True,
            charset="utf8mb4",
        )
        try:
            async with bootstrap.cursor() as cursor:
                await cursor.execute(
                    f"CREATE DATABASE IF NOT EXISTS `{self.config.database}` "
                    "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                )
        finally:
            bootstrap.close()

        self._pool = await aiomysql.create_pool(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            db=self.config.database,
            minsize=1,
            maxsize=self.config.pool_limit,
            autocommit=True,
            charset="utf8mb4",
        )
        await self._create_schema()

    async def close(self) -> None:
        if self._pool is None:
            return

        self._pool.close()
        await self._pool.wait_closed()
        self._pool = None
        self._settings_cache.clear()

    async def _create_schema(self) -> None:
        create_guild_settings = """
        CREATE TABLE IF NOT EXISTS guild_settings (
            guild_id BIGINT UNSIGNED NOT NULL,
            guild_name VARCHAR(100) NOT NULL DEFAULT '',
            prefix VARCHAR(8) NOT NULL DEFAULT '!',
            mod_log_channel_id BIGINT UNSIGNED NULL DEFAULT NULL,
            moderation_enabled TINYINT(1) NOT NULL DEFAULT 1,
            automod_enabled TINYINT(1) NOT NULL DEFAULT 0,
            automod_spam_limit INT UNSIGNED NOT NULL DEFAULT 5,
            automod_caps_limit INT UNSIGNED NOT NULL DEFAULT 70,
            automod_punishment VARCHAR(8) NOT NULL DEFAULT 'warn',
            bad_words TEXT NULL,
            joined_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
            PRIMARY KEY (guild_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
        """
        create_user_profiles = """
        CREATE TABLE IF NOT EXISTS user_profiles (
            guild_id BIGINT UNSIGNED NOT NULL,
            user_id BIGINT UNSIGNED NOT NULL,
            username VARCHAR(100) NOT NULL DEFAULT '',
            commands_used INT UNSIGNED NOT NULL DEFAULT 0,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
            PRIMARY KEY (guild_id, user_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
        """
        create_warnings = """
        CREATE TABLE IF NOT EXISTS warnings (
            id BIGINT UNSIGNED NOT NULL AUTO_INCREMENT,
            guild_id BIGINT UNSIGNED NOT NULL,
            user_id BIGINT UNSIGNED NOT NULL,
            moderator_id BIGINT UNSIGNED NOT NULL,
            reason VARCHAR(512) NOT NULL,
            expires_at TIMESTAMP NULL DEFAULT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (id),
            INDEX idx_warnings_guild_user (guild_id, user_id),
            INDEX idx_warnings_active (guild_id, user_id, expires_at)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
        """
        create_infractions = """
        CREATE TABLE IF NOT EXISTS infractions (
            id BIGINT UNSIGNED NOT NULL AUTO_INCREMENT,
            guild_id BIGINT UNSIGNED NOT NULL,
            user_id BIGINT UNSIGNED NOT NULL,
            actor_id BIGINT UNSIGNED NOT NULL,
            action VARCHAR(64) NOT NULL,
            reason VARCHAR(512) NOT NULL,
            duration VARCHAR(32) NULL DEFAULT NULL,
            expires_at TIMESTAMP NULL DEFAULT NULL,
            metadata TEXT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (id),
            INDEX idx_infractions_guild_user (guild_id, user_id, created_at),
            INDEX idx_infractions_action (guild_id, action, created_at)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
        """
        async with self.pool.acquire() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(create_guild_settings)
                await cursor.execute(create_user_profiles)
                await cursor.execute(create_warnings)
                await cursor.execute(create_infractions)

    @property
    def pool(self) -> aiomysql.Pool:
        if self._pool is None:
            raise RuntimeError("MySQL pool not initialized.")
        return self._pool

    async def ensure_guild(self, guild_id: int, guild_name: str = "") -> None:
        async with self.pool.acquire() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    INSERT INTO guild_settings (guild_id, guild_name, prefix, bad_words)
                    VALUES (%s, %s, %s, %s)
                    ON DUPLICATE KEY UPDATE
                        guild_name = IF(VALUES(guild_name) = '', guild_name, VALUES(guild_name))
                    """,
                    (guild_id, guild_name[:100], self.default_prefix, "[]"),
                )

    async def find_guild_config(self, guild_id: int, guild_name: str = "") -> GuildConfig:
        now = time.monotonic()
        cached = self._settings_cache.get(guild_id)
        if cached and (now - cached[0]) <= self.SETTINGS_CACHE_TTL:
            return cached[1]

        await self.ensure_guild(guild_id, guild_name)
        async with self.pool.acquire() as connection:
            async with connection.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(
                    """
                    SELECT
                        guild_id,
                        guild_name,
                        prefix,
                        mod_log_channel_id,
                        moderation_enabled,
                        automod_enabled,
                        automod_spam_limit,
                        automod_caps_limit,
                        automod_punishment,
                        bad_words
                    FROM guild_settings
                    WHERE guild_id = %s
                    LIMIT 1
                    """,
                    (guild_id,),
                )
                row = await cursor.fetchone()

        config = self._normalize_settings(row, guild_id)
        self._settings_cache[guild_id] = (now, config)
        return config

    async def update_guild_config(self, guild_id: int, **updates: Any) -> GuildConfig:
        if not updates:
            return await self.find_guild_config(guild_id)

        await self.ensure_guild(guild_id)
        clauses: list[str] = []
        values: list[Any] = []
        for name, value in updates.items():
            field_type = SETTINGS_FIELD_TYPES.get(name)
            if field_type is None:
                raise ValueError(f"Unknown guild setting: {name}")
            clauses.append(f"{name} = %s")
            values.append(self._serialize_setting_value(field_type, value))

        values.append(guild_id)
        query = f"UPDATE guild_settings SET {', '.join(clauses)} WHERE guild_id = %s"
        async with self.pool.acquire() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(query, tuple(values))

        self._settings_cache.pop(guild_id, None)
        return await self.find_guild_config(guild_id)

    async def find_user_profile(self, guild_id: int, user_id: int) -> UserProfile | None:
        async with self.pool.acquire() as connection:
            async with connection.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(
                    """
                    SELECT
                        guild_id,
                        user_id,
                        username,
                        commands_used
                    FROM user_profiles
                    WHERE guild_id = %s AND user_id = %s
                    LIMIT 1
                    """,
                    (guild_id, user_id),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None

                await cursor.execute(
                    """
                    SELECT
                        COUNT(*) AS total,
                        COALESCE(SUM(expires_at IS NULL OR expires_at > CURRENT_TIMESTAMP), 0) AS active
                    FROM warnings
                    WHERE guild_id = %s AND user_id = %s
                    """,
                    (guild_id, user_id),
                )
                count_row = await cursor.fetchone()

        return UserProfile(
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            username=str(row["username"] or ""),
            commands_used=int(row["commands_used"]),
            warnings_total=int(count_row["total"]) if count_row else 0,
            warnings_active=int(count_row["active"]) if count_row else 0,
        )

    async def increment_command_usage(self, guild_id: int, user_id: int, username: str) -> None:
        async with self.pool.acquire() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    INSERT INTO user_profiles (guild_id, user_id, username, commands_used)
                    VALUES (%s, %s, %s, 1)
                    ON DUPLICATE KEY UPDATE
                        username = VALUES(username),
                        commands_used = commands_used + 1
                    """,
                    (guild_id, user_id, username[:100]),
                )

    async def add_warning(
        self,
        guild_id: int,
        user_id: int,
        moderator_id: int,
        reason: str,
        expires_at: datetime | None = None,
    ) -> tuple[int, int, int]:
        sanitized_reason = reason.strip()[:512] or "No reason provided."
        async with self.pool.acquire() as connection:
            async with connection.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(
                    """
                    INSERT INTO warnings (guild_id, user_id, moderator_id, reason, expires_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (guild_id, user_id, moderator_id, sanitized_reason, _to_db_datetime(expires_at)),
                )
                warning_id = int(cursor.lastrowid or 0)

                await cursor.execute(
                    """
                    SELECT
                        COUNT(*) AS total,
                        COALESCE(SUM(expires_at IS NULL OR expires_at > CURRENT_TIMESTAMP), 0) AS active
                    FROM warnings
                    WHERE guild_id = %s AND user_id = %s
                    """,
                    (guild_id, user_id),
                )
                count_row = await cursor.fetchone()

        total = int(count_row["total"]) if count_row else 0
        active = int(count_row["active"]) if count_row else 0
        return warning_id, total, active

    async def log_infraction(
        self,
        guild_id: int,
        user_id: int,
        actor_id: int,
        action: str,
        reason: str,
        *,
        duration: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        clean_action = action.strip()[:64] or "unknown"
        clean_reason = reason.strip()[:512] or "No reason provided."
        serialized_metadata = None
        if metadata:
            serialized_metadata = json.dumps(metadata, ensure_ascii=True, separators=(",", ":"))

        async with self.pool.acquire() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    INSERT INTO infractions (
                        guild_id,
                        user_id,
                        actor_id,
                        action,
                        reason,
                        duration,
                        expires_at,
                        metadata
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        guild_id,
                        user_id,
                        actor_id,
                        clean_action,
                        clean_reason,
                        duration,
                        _to_db_datetime(expires_at),
                        serialized_metadata,
                    ),
                )
                return int(cursor.lastrowid or 0)

    def _normalize_settings(self, row: dict[str, Any] | None, guild_id: int) -> GuildConfig:
        if row is None:
            return replace(GuildConfig.default(guild_id), prefix=self.default_prefix)

        punishment = str(row["automod_punishment"] or "warn").lower()
        return GuildConfig(
            guild_id=int(row["guild_id"]),
            guild_name=str(row["guild_name"] or ""),
            prefix=str(row["prefix"] or self.default_prefix),
            mod_log_channel_id=int(row["mod_log_channel_id"]) if row["mod_log_channel_id"] else None,
            moderation_enabled=bool(row["moderation_enabled"]),
            automod_enabled=bool(row["automod_enabled"]),
            automod_spam_limit=int(row["automod_spam_limit"]),
            automod_caps_limit=int(row["automod_caps_limit"]),
            automod_punishment=punishment if punishment in PUNISHMENTS else "warn",
            bad_words=tuple(_parse_word_list(row.get("bad_words"))),
        )

    @staticmethod
    def _serialize_setting_value(field_type: str, value: Any) -> Any:
        if field_type == "bool":
            return int(bool(value))
        if field_type == "int":
            return int(value)
        if field_type == "str":
            return str(value)[:100]
        if field_type == "int_or_none":
            if value is None:
                return None
            return int(value)
        if field_type == "prefix":
            prefix = str(value).strip()
            if not prefix or len(prefix) > 8 or any(char.isspace() for char in prefix):
                raise ValueError("The prefix must have 1 to 8 characters and no spaces.")
            return prefix
        if field_type == "punishment":
            punishment = str(value).strip().lower()
            if punishment not in PUNISHMENTS:
                raise ValueError(f"Invalid punishment: {value}")
            return punishment
        if field_type == "word_list":
            if value is None:
                return "[]"
            if isinstance(value, str):
                value = value.split(",")
            return json.dumps(_normalize_words(value), ensure_ascii=False)
        return value
