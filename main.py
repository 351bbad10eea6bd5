import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv

from bot_commands.catalog import build_registry
from core.automod import AutoModFilter
from core.cooldowns import CooldownTracker
from core.dispatcher import Dispatcher
from core.registry import SLASH, CommandRegistry
from guild_store import DEFAULT_PREFIX, GuildStore, MySQLConfig

LOGGER = logging.getLogger("guildhall")


def sanitize_env_value(raw_value: str | None) -> str | None:
    if raw_value is None:
        return None
    cleaned = raw_value.strip().strip('"').strip("'")
    return cleaned or None


def sanitize_token(raw_value: str | None) -> str | None:
    token = sanitize_env_value(raw_value)
    if not token:
        return None
    if token.lower().startswith("bot "):
        token = token[4:].strip()
    return token or None


def looks_like_discord_token(value: str) -> bool:
    # Bot token has three parts separated by dots and is much longer than 32 chars.
    return value.count(".") == 2 and len(value) >= 50


def parse_discord_id(raw_value: str | None) -> int | None:
    if not raw_value:
        return None

    cleaned = sanitize_env_value(raw_value)
    if cleaned is None:
        return None
    if cleaned.startswith("<") and cleaned.endswith(">"):
        cleaned = cleaned[1:-1]

    matches = re.findall(r"\d{17,20}", cleaned)
    candidate = matches[0] if matches else cleaned

    try:
        discord_id = int(candidate)
        if not (17 <= len(str(discord_id)) <= 20):
            raise ValueError
        return discord_id
    except ValueError:
        return None


def parse_positive_int(raw_value: str | None, var_name: str, default: int) -> int:
    normalized = sanitize_env_value(raw_value)
    if normalized is None:
        return default

    try:
        parsed = int(normalized)
    except ValueError as exc:
        raise RuntimeError(f"{var_name} must be a positive integer.") from exc

    if parsed <= 0:
        raise RuntimeError(f"{var_name} must be greater than zero.")
    return parsed


def parse_bool_env(raw_value: str | None, var_name: str, default: bool = False) -> bool:
    normalized = sanitize_env_value(raw_value)
    if normalized is None:
        return default

    lowered = normalized.lower()
    truthy = {"1", "true", "yes", "y", "on", "enable", "enabled"}
    falsy = {"0", "false", "no", "n", "off", "disable", "disabled"}
    if lowered in truthy:
        return True
    if lowered in falsy:
        return False
    raise RuntimeError(f"{var_name} must be true/false (or 1/0).")


def parse_prefix(raw_value: str | None) -> str:
    prefix = sanitize_env_value(raw_value)
    if prefix is None:
        return DEFAULT_PREFIX
    if len(prefix) > 8 or any(char.isspace() for char in prefix):
        raise RuntimeError("DEFAULT_PREFIX must have 1 to 8 characters and no spaces.")
    return prefix


def load_mysql_config_from_env() -> MySQLConfig:
    host = sanitize_env_value(os.getenv("DB_HOST")) or "localhost"
    user = sanitize_env_value(os.getenv("DB_USER"))
    password = sanitize_env_value(os.getenv("DB_PASSWORD")) or ""
    database = sanitize_env_value(os.getenv("DB_NAME"))
    port = parse_positive_int(os.getenv("DB_PORT"), "DB_PORT", default=3306)
    pool_limit = parse_positive_int(os.getenv("DB_POOL_LIMIT"), "DB_POOL_LIMIT", default=10)

    if not user:
        raise RuntimeError("DB_USER was not found in .env.")
    if not database:
        raise RuntimeError("DB_NAME was not found in .env.")

    return MySQLConfig(
        host=host,
        port=port,
        user=user,
        password=password,
        database=database,
        pool_limit=pool_limit,
    )


async def send_ephemeral(interaction: discord.Interaction, message: str) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
    except (discord.NotFound, discord.Forbidden, discord.HTTPException):
        LOGGER.warning(
            "Could not answer the interaction (expired, missing permission or deleted channel)."
        )


def setup_logging() -> None:
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / "bot.log"

    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=1_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    logging.getLogger("discord.http").setLevel(logging.WARNING)
    LOGGER.info("Logging to %s", log_file.resolve())


def ensure_utf8_runtime() -> None:
    os.environ.setdefault("PYTHONUTF8", "1")
    for stream_name in ("stdout", "stderr"):
        stream = getattr(sys, stream_name, None)
        if stream is None or not hasattr(stream, "reconfigure"):
            continue
        stream.reconfigure(encoding="utf-8", errors="replace")


class DispatchingTree(app_commands.CommandTree):
    """Publishes slash commands but hands every invocation to the dispatcher."""

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        dispatcher = getattr(self.client, "dispatcher", None)
        if dispatcher is None:
            return False
        try:
            await dispatcher.handle_interaction(interaction)
        except Exception as exc:
            LOGGER.error(
                "Unhandled error while dispatching an interaction.",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            await send_ephemeral(
                interaction,
                "An unexpected error occurred while running the command.",
            )
        # The tree never runs callbacks itself.
        return False


class GuildhallBot(commands.Bot):
    def __init__(
        self,
        guild_id: int | None,
        owner_id: int | None,
        store: GuildStore,
        *,
        registry: CommandRegistry | None = None,
        members_intent_enabled: bool,
        message_content_intent_enabled: bool,
    ) -> None:
        intents = discord.Intents.default()
        intents.members = members_intent_enabled
        intents.message_content = message_content_intent_enabled
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
            owner_id=owner_id,
            tree_cls=DispatchingTree,
        )
        self.sync_guild_id = guild_id
        self.store = store
        self.registry = registry if registry is not None else build_registry()
        self.cooldowns = CooldownTracker()
        self.automod = AutoModFilter(self, store)
        self.dispatcher = Dispatcher(
            self,
            self.registry,
            self.cooldowns,
            automod=self.automod,
            store=store,
        )

    async def _delete_overlapping_global_commands(self) -> int:
        local_root_names = {
            cmd.qualified_name.split(" ", 1)[0]
            for cmd in self.tree.walk_commands()
            if isinstance(cmd, app_commands.Command)
        }
        if not local_root_names:
            return 0

        removed_count = 0
        global_commands = await self.tree.fetch_commands()
        for global_command in global_commands:
            if global_command.name not in local_root_names:
                continue
            try:
                await global_command.delete()
                removed_count += 1
            except discord.HTTPException:
                LOGGER.warning(
                    "Could not remove global command '%s' (id=%s).",
                    global_command.name,
                    global_command.id,
                )
        return removed_count

    def _publish_slash_commands(self) -> int:
        published = 0
        for descriptor in self.registry.commands(SLASH):
            if descriptor.schema is None:
                continue
            self.tree.add_command(descriptor.schema)
            published += 1
        return published

    async def setup_hook(self) -> None:
        await self.store.connect()
        LOGGER.info(
            "MySQL connected at %s:%s/%s",
            self.store.config.host,
            self.store.config.port,
            self.store.config.database,
        )

        published = self._publish_slash_commands()
        LOGGER.info(
            "Command registry loaded: %s commands (%s slash published).",
            len(self.registry),
            published,
        )

        try:
            if self.sync_guild_id:
                guild = discord.Object(id=self.sync_guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                removed_globals = await self._delete_overlapping_global_commands()
                LOGGER.info(
                    "Commands synced to guild %s: %s",
                    self.sync_guild_id,
                    len(synced),
                )
                if removed_globals:
                    LOGGER.info(
                        "Global commands removed to avoid duplicates in the guild: %s",
                        removed_globals,
                    )
            else:
                synced = await self.tree.sync()
                LOGGER.info("Global commands synced: %s", len(synced))
        except Exception as exc:
            LOGGER.error(
                "Failed to sync commands.",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def on_ready(self) -> None:
        if self.user is None:
            return
        LOGGER.info("Logged in as %s (id=%s) serving %s guilds", self.user, self.user.id, len(self.guilds))
        await self.change_presence(
            activity=discord.Activity(type=discord.ActivityType.watching, name="your server | /help")
        )

    async def on_message(self, message: discord.Message) -> None:
        await self.dispatcher.handle_message(message)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        LOGGER.info("Joined new guild: %s (%s)", guild.name, guild.id)
        try:
            await self.store.ensure_guild(guild.id, guild.name)
        except Exception as exc:
            LOGGER.error(
                "Failed to create the guild config row. guild=%s",
                guild.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

        me = guild.me
        channel = next(
            (
                candidate
                for candidate in guild.text_channels
                if me is not None and candidate.permissions_for(me).send_messages
            ),
            None,
        )
        if channel is None:
            return

        embed = discord.Embed(
            title="👋 Thanks for adding me!",
            description="I'm ready to help manage your server!",
            color=discord.Color.green(),
        )
        embed.add_field(
            name="🚀 Getting Started",
            value=f"Use `/help` to see all available commands\nText commands use the `{self.store.default_prefix}` prefix (change it with `/setprefix`)",
            inline=False,
        )
        embed.add_field(
            name="🛡️ AutoMod",
            value="Configure spam, bad-word and caps filters with `/setautomod` and `/badwords`",
            inline=False,
        )
        embed.timestamp = discord.utils.utcnow()
        try:
            await channel.send(embed=embed)
        except (discord.Forbidden, discord.HTTPException):
            LOGGER.warning("Could not send the welcome message. guild=%s", guild.id)

    async def close(self) -> None:
        try:
            await self.store.close()
            LOGGER.info("MySQL pool closed.")
        except Exception as exc:
            LOGGER.warning(
                "Failed to close the MySQL pool.",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        await super().close()


def main() -> None:
    ensure_utf8_runtime()
    load_dotenv()
    setup_logging()

    token = sanitize_token(os.getenv("DISCORD_TOKEN"))
    guild_id = parse_discord_id(os.getenv("GUILD_ID"))
    owner_id = parse_discord_id(os.getenv("OWNER_ID"))
    default_prefix = parse_prefix(os.getenv("DEFAULT_PREFIX"))
    members_intent_enabled = parse_bool_env(
        os.getenv("ENABLE_MEMBERS_INTENT"),
        "ENABLE_MEMBERS_INTENT",
        default=False,
    )
    message_content_intent_enabled = parse_bool_env(
        os.getenv("ENABLE_MESSAGE_CONTENT_INTENT"),
        "ENABLE_MESSAGE_CONTENT_INTENT",
        default=True,
    )
    mysql_config = load_mysql_config_from_env()

    if not token:
        raise RuntimeError("DISCORD_TOKEN was not found in .env.")
    if not looks_like_discord_token(token):
        raise RuntimeError(
            "DISCORD_TOKEN looks invalid. Use the bot token from Developer Portal > Bot > Reset Token."
        )
    if os.getenv("GUILD_ID") and guild_id is None:
        LOGGER.warning("Invalid GUILD_ID. Commands will sync globally.")
    if os.getenv("OWNER_ID") and owner_id is None:
        LOGGER.warning("Invalid OWNER_ID. owner_id will not be set.")
    if not message_content_intent_enabled:
        LOGGER.warning(
            "ENABLE_MESSAGE_CONTENT_INTENT disabled: prefix commands and content AutoMod will not see message text."
        )

    bot = GuildhallBot(
        guild_id=guild_id,
        owner_id=owner_id,
        store=GuildStore(mysql_config, default_prefix=default_prefix),
        members_intent_enabled=members_intent_enabled,
        message_content_intent_enabled=message_content_intent_enabled,
    )
    try:
        bot.run(token, log_handler=None)
    except discord.errors.PrivilegedIntentsRequired as exc:
        raise RuntimeError(
            "Privileged intents are not enabled in the Developer Portal. "
            "Enable them there or set "
            "ENABLE_MEMBERS_INTENT/ENABLE_MESSAGE_CONTENT_INTENT=false in .env."
        ) from exc


if __name__ == "__main__":
    main()
