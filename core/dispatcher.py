import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import discord

from core.automod import AutoModFilter
from core.cooldowns import CooldownTracker, monotonic_ms
from core.registry import PREFIX, SLASH, CommandDescriptor, CommandRegistry
from guild_store import DEFAULT_PREFIX

LOGGER = logging.getLogger("guildhall.dispatcher")

PERMISSION_DENIED_MESSAGE = "❌ You don't have permission to use this command!"
HANDLER_FAILURE_MESSAGE = "❌ There was an error executing this command!"


def cooldown_message(descriptor: CommandDescriptor, remaining_seconds: float) -> str:
    return (
        f"⏰ Please wait {remaining_seconds:.1f} more seconds "
        f"before using `{descriptor.name}` again."
    )


@dataclass
class CommandContext:
    bot: Any
    namespace: str
    descriptor: CommandDescriptor
    invoker: Any
    guild: Any = None
    channel: Any = None
    args: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)
    message: Any = None
    interaction: Any = None
    config: Any = None

    async def reply(
        self,
        content: str | None = None,
        *,
        embed: discord.Embed | None = None,
        ephemeral: bool = False,
    ) -> Any:
        kwargs: dict[str, Any] = {}
        if embed is not None:
            kwargs["embed"] = embed
        try:
            if self.interaction is not None:
                if self.interaction.response.is_done():
                    return await self.interaction.followup.send(content, ephemeral=ephemeral, **kwargs)
                return await self.interaction.response.send_message(content, ephemeral=ephemeral, **kwargs)
            return await self.message.reply(content, **kwargs)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            LOGGER.warning(
                "Could not reply to /%s (expired interaction, missing permission or deleted channel).",
                self.descriptor.name,
            )
            return None


def has_permissions(invoker: Any, required: frozenset[str]) -> bool:
    if not required:
        return True
    permissions = getattr(invoker, "guild_permissions", None)
    if permissions is None:
        return False
    if getattr(permissions, "administrator", False):
        return True
    return all(getattr(permissions, flag, False) for flag in required)


def parse_invocation(content: str, prefix: str) -> tuple[str, list[str]] | None:
    if not prefix or not content.startswith(prefix):
        return None
    parts = content[len(prefix):].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


class Dispatcher:
    """Turns one inbound gateway event into at most one command execution."""

    def __init__(
        self,
        bot: Any,
        registry: CommandRegistry,
        cooldowns: CooldownTracker,
        automod: AutoModFilter | None = None,
        store: Any = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.bot = bot
        self.registry = registry
        self.cooldowns = cooldowns
        self.automod = automod
        self.store = store
        self._clock = clock

    async def handle_inbound_event(self, event: Any) -> None:
        if isinstance(event, discord.Interaction) or hasattr(event, "response"):
            await self.handle_interaction(event)
        else:
            await self.handle_message(event)

    async def _load_config(self, guild: Any) -> Any:
        if self.store is None:
            return None
        return await self.store.find_guild_config(guild.id, getattr(guild, "name", "") or "")

    async def handle_message(self, message: Any) -> None:
        author = message.author
        if getattr(author, "bot", False) or message.guild is None:
            return

        try:
            config = await self._load_config(message.guild)
        except Exception as exc:
            LOGGER.error(
                "Failed to load guild config. guild=%s",
                message.guild.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return

        if self.automod is not None and config is not None:
            if await self.automod.handle(message, config):
                return

        prefix = config.prefix if config is not None else DEFAULT_PREFIX
        parsed = parse_invocation(message.content or "", prefix)
        if parsed is None:
            return
        token, args = parsed

        descriptor = self.registry.resolve(token, PREFIX)
        if descriptor is None:
            return

        context = CommandContext(
            bot=self.bot,
            namespace=PREFIX,
            descriptor=descriptor,
            invoker=author,
            guild=message.guild,
            channel=message.channel,
            args=args,
            message=message,
            config=config,
        )
        await self._run(context)

    async def handle_interaction(self, interaction: Any) -> None:
        if interaction.type is not discord.InteractionType.application_command:
            return
        if getattr(interaction.user, "bot", False):
            return

        data = interaction.data or {}
        token = data.get("name", "")
        descriptor = self.registry.resolve(token, SLASH)
        if descriptor is None:
            return

        config = None
        if interaction.guild is not None:
            try:
                config = await self._load_config(interaction.guild)
            except Exception as exc:
                LOGGER.warning(
                    "Guild config unavailable for /%s. guild=%s",
                    descriptor.name,
                    interaction.guild.id,
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        namespace = getattr(interaction, "namespace", None)
        context = CommandContext(
            bot=self.bot,
            namespace=SLASH,
            descriptor=descriptor,
            invoker=interaction.user,
            guild=interaction.guild,
            channel=interaction.channel,
            options=dict(vars(namespace)) if namespace is not None else {},
            interaction=interaction,
            config=config,
        )
        await self._run(context)

    async def _run(self, context: CommandContext) -> None:
        descriptor = context.descriptor
        invoker = context.invoker
        ephemeral = context.interaction is not None

        if not has_permissions(invoker, descriptor.required_permissions):
            await context.reply(PERMISSION_DENIED_MESSAGE, ephemeral=ephemeral)
            return

        now = self._clock()
        check = self.cooldowns.check_and_reserve(
            descriptor.name,
            invoker.id,
            descriptor.cooldown_seconds,
            now=now,
        )
        if not check.allowed:
            await context.reply(cooldown_message(descriptor, check.remaining_seconds), ephemeral=ephemeral)
            return

        self.cooldowns.record(
            descriptor.name,
            invoker.id,
            now=now,
            cooldown_seconds=descriptor.cooldown_seconds,
        )
        try:
            await descriptor.handler(context)
        except Exception as exc:
            LOGGER.error(
                "Error executing %s command %s. guild=%s user=%s",
                context.namespace,
                descriptor.name,
                context.guild.id if context.guild is not None else "DM",
                invoker.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            await context.reply(HANDLER_FAILURE_MESSAGE, ephemeral=True)
            return

        await self._count_usage(context)

    async def _count_usage(self, context: CommandContext) -> None:
        if self.store is None or context.guild is None:
            return
        try:
            await self.store.increment_command_usage(
                context.guild.id,
                context.invoker.id,
                str(context.invoker),
            )
        except Exception as exc:
            LOGGER.warning(
                "Failed to count command usage. guild=%s user=%s",
                context.guild.id,
                context.invoker.id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
