import logging
from typing import Literal, Optional

import discord
from discord import app_commands

from core.dispatcher import CommandContext
from core.registry import slash_command

LOGGER = logging.getLogger("guildhall.commands.settings")

MANAGE_GUILD = ("manage_guild",)


def _store(ctx: CommandContext):
    store = getattr(ctx.bot, "store", None)
    if store is None:
        raise RuntimeError("GuildStore not initialized.")
    return store


def bool_status(value: bool) -> str:
    return "On" if value else "Off"


def build_settings_embed(config) -> discord.Embed:
    log_channel = f"<#{config.mod_log_channel_id}>" if config.mod_log_channel_id else "Not set"
    bad_words = ", ".join(f"`{word}`" for word in config.bad_words) or "None"

    embed = discord.Embed(title="⚙️ Server settings", color=discord.Color.blurple())
    embed.add_field(name="Prefix", value=f"`{config.prefix}`", inline=True)
    embed.add_field(name="Moderation", value=bool_status(config.moderation_enabled), inline=True)
    embed.add_field(name="Mod-log", value=log_channel, inline=True)
    embed.add_field(name="AutoMod", value=bool_status(config.automod_enabled), inline=True)
    embed.add_field(name="Spam limit", value=f"{config.automod_spam_limit} msgs / 5s", inline=True)
    embed.add_field(name="Caps limit", value=f"{config.automod_caps_limit}%", inline=True)
    embed.add_field(name="Punishment", value=config.automod_punishment, inline=True)
    embed.add_field(name="Bad words", value=bad_words[:1024], inline=False)
    return embed


async def _require_guild(ctx: CommandContext) -> bool:
    if ctx.guild is None:
        await ctx.reply("This command only works inside a server.", ephemeral=True)
        return False
    return True


@app_commands.command(name="settings", description="Show the moderation settings of this server.")
@app_commands.guild_only()
@app_commands.default_permissions(manage_guild=True)
async def settings(ctx: CommandContext) -> None:
    if not await _require_guild(ctx):
        return
    config = await _store(ctx).find_guild_config(ctx.guild.id, ctx.guild.name)
    await ctx.reply(embed=build_settings_embed(config), ephemeral=True)


@app_commands.command(name="setprefix", description="Change the prefix for text commands.")
@app_commands.guild_only()
@app_commands.default_permissions(manage_guild=True)
@app_commands.describe(prefix="New prefix (1 to 8 characters, no spaces).")
async def setprefix(ctx: CommandContext, prefix: str) -> None:
    if not await _require_guild(ctx):
        return
    try:
        config = await _store(ctx).update_guild_config(ctx.guild.id, prefix=prefix)
    except ValueError as exc:
        await ctx.reply(f"❌ {exc}", ephemeral=True)
        return
    LOGGER.info("Prefix changed. guild=%s prefix=%s", ctx.guild.id, config.prefix)
    await ctx.reply(f"✅ Prefix set to `{config.prefix}`.", ephemeral=True)


@app_commands.command(name="setautomod", description="Configure AutoMod for this server.")
@app_commands.guild_only()
@app_commands.default_permissions(manage_guild=True)
@app_commands.describe(
    enabled="Turn AutoMod on or off.",
    spam_limit="Messages allowed per 5 seconds before it counts as spam.",
    caps_threshold="Uppercase percentage that counts as excessive caps.",
    punishment="Action applied when a rule matches.",
)
async def setautomod(
    ctx: CommandContext,
    enabled: bool | None = None,
    spam_limit: Optional[app_commands.Range[int, 1, 50]] = None,
    caps_threshold: Optional[app_commands.Range[int, 1, 100]] = None,
    punishment: Literal["warn", "mute", "kick", "ban"] | None = None,
) -> None:
    if not await _require_guild(ctx):
        return

    updates = {}
    if enabled is not None:
        updates["automod_enabled"] = enabled
    if spam_limit is not None:
        updates["automod_spam_limit"] = spam_limit
    if caps_threshold is not None:
        updates["automod_caps_limit"] = caps_threshold
    if punishment is not None:
        updates["automod_punishment"] = punishment

    if not updates:
        await ctx.reply("Nothing to change. Pass at least one option.", ephemeral=True)
        return

    config = await _store(ctx).update_guild_config(ctx.guild.id, **updates)
    LOGGER.info("AutoMod updated. guild=%s fields=%s", ctx.guild.id, sorted(updates))
    await ctx.reply(embed=build_settings_embed(config), ephemeral=True)


@app_commands.command(name="badwords", description="Manage the AutoMod bad-word list.")
@app_commands.guild_only()
@app_commands.default_permissions(manage_guild=True)
@app_commands.describe(action="What to do with the list.", word="Word to add or remove.")
async def badwords(
    ctx: CommandContext,
    action: Literal["add", "remove", "list"],
    word: str | None = None,
) -> None:
    if not await _require_guild(ctx):
        return

    store = _store(ctx)
    config = await store.find_guild_config(ctx.guild.id, ctx.guild.name)
    if action == "list":
        listed = ", ".join(f"`{item}`" for item in config.bad_words) or "The list is empty."
        await ctx.reply(listed[:2000], ephemeral=True)
        return

    cleaned = (word or "").strip().lower()
    if not cleaned:
        await ctx.reply("❌ Provide the word to add or remove.", ephemeral=True)
        return

    words = set(config.bad_words)
    if action == "add":
        words.add(cleaned)
    elif cleaned in words:
        words.discard(cleaned)
    else:
        await ctx.reply(f"`{cleaned}` is not on the list.", ephemeral=True)
        return

    updated = await store.update_guild_config(ctx.guild.id, bad_words=sorted(words))
    await ctx.reply(f"✅ Bad-word list now has {len(updated.bad_words)} entries.", ephemeral=True)


@app_commands.command(name="setmodlog", description="Set or clear the moderation log channel.")
@app_commands.guild_only()
@app_commands.default_permissions(manage_guild=True)
@app_commands.describe(channel="Log channel. Leave empty to clear it.")
async def setmodlog(ctx: CommandContext, channel: discord.TextChannel | None = None) -> None:
    if not await _require_guild(ctx):
        return
    channel_id = channel.id if channel is not None else None
    await _store(ctx).update_guild_config(ctx.guild.id, mod_log_channel_id=channel_id)
    if channel is None:
        await ctx.reply("✅ Mod-log channel cleared.", ephemeral=True)
        return
    await ctx.reply(f"✅ Mod-log channel set to {channel.mention}.", ephemeral=True)


SLASH_COMMANDS = (
    slash_command(settings, permissions=MANAGE_GUILD),
    slash_command(setprefix, permissions=MANAGE_GUILD),
    slash_command(setautomod, permissions=MANAGE_GUILD),
    slash_command(badwords, permissions=MANAGE_GUILD),
    slash_command(setmodlog, permissions=MANAGE_GUILD),
)
