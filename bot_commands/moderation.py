import logging

import discord
from discord import app_commands

from core.automod import send_modlog
from core.dispatcher import CommandContext
from core.registry import prefix_command, slash_command

LOGGER = logging.getLogger("guildhall.commands.moderation")


def build_reason(actor, reason: str | None) -> str:
    base = reason.strip() if reason else "No reason provided"
    return f"{base} | Moderator: {actor} ({actor.id})"


def can_ban(guild, actor, target, bot_user) -> tuple[bool, str | None]:
    if target.id == actor.id:
        return False, "❌ You cannot ban yourself!"
    if bot_user is not None and target.id == bot_user.id:
        return False, "❌ I cannot ban myself!"
    if target.id == guild.owner_id:
        return False, "❌ You cannot moderate the server owner!"
    if actor.id != guild.owner_id and target.top_role >= actor.top_role:
        return False, "❌ That member has a role equal to or higher than yours!"

    me = guild.me
    if me is None or target.top_role >= me.top_role:
        return False, "❌ I cannot ban this user! They may have higher permissions than me."
    return True, None


async def clear(ctx: CommandContext) -> None:
    try:
        amount = int(ctx.args[0]) if ctx.args else 0
    except ValueError:
        amount = 0

    if amount < 1 or amount > 100:
        await ctx.reply("❌ Please provide a number between 1 and 100!")
        return

    channel = ctx.channel
    if channel is None or not hasattr(channel, "purge"):
        await ctx.reply("❌ This command can only be used in text channels!")
        return

    try:
        # The invoking message is purged too.
        deleted = await channel.purge(limit=amount + 1, reason=f"Clear by {ctx.invoker} ({ctx.invoker.id})")
    except (discord.Forbidden, discord.HTTPException):
        LOGGER.warning("Clear failed. guild=%s channel=%s", ctx.guild.id, channel.id)
        await ctx.reply("❌ There was an error trying to delete messages!")
        return

    await channel.send(f"✅ Deleted {max(len(deleted) - 1, 0)} messages!", delete_after=5)


@app_commands.command(name="ban", description="Ban a user from the server.")
@app_commands.guild_only()
@app_commands.default_permissions(ban_members=True)
@app_commands.describe(
    target="The user to ban.",
    reason="Reason for the ban.",
    days="Number of days of messages to delete (0-7).",
)
async def ban(
    ctx: CommandContext,
    target: discord.User,
    reason: str | None = None,
    days: app_commands.Range[int, 0, 7] = 0,
) -> None:
    guild = ctx.guild
    if guild is None:
        await ctx.reply("This command only works inside a server.", ephemeral=True)
        return

    member = guild.get_member(target.id)
    if member is None:
        await ctx.reply("❌ User not found in this server!", ephemeral=True)
        return

    allowed, message = can_ban(guild, ctx.invoker, member, getattr(ctx.bot, "user", None))
    if not allowed:
        await ctx.reply(message or "❌ Action denied.", ephemeral=True)
        return

    shown_reason = reason or "No reason provided"
    dm_embed = discord.Embed(
        title="🔨 You have been banned",
        description=f"You have been banned from **{guild.name}**",
        color=discord.Color.red(),
    )
    dm_embed.add_field(name="Reason", value=shown_reason, inline=False)
    dm_embed.add_field(name="Moderator", value=str(ctx.invoker), inline=False)
    try:
        await member.send(embed=dm_embed)
    except (discord.Forbidden, discord.HTTPException):
        LOGGER.info("Ban DM not delivered. guild=%s user=%s", guild.id, member.id)

    await member.ban(reason=build_reason(ctx.invoker, reason), delete_message_days=days)

    store = getattr(ctx.bot, "store", None)
    if store is not None:
        try:
            await store.log_infraction(
                guild_id=guild.id,
                user_id=member.id,
                actor_id=ctx.invoker.id,
                action="ban",
                reason=shown_reason,
                metadata={"delete_message_days": days},
            )
        except Exception as exc:
            LOGGER.error(
                "Failed to store ban infraction.",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
    if ctx.config is not None:
        await send_modlog(
            guild,
            ctx.config,
            title="Member banned",
            description=f"User: {member.mention}\nModerator: {ctx.invoker.mention}\nReason: {shown_reason}",
            color=discord.Color.red(),
        )

    embed = discord.Embed(
        title="🔨 User Banned",
        description=f"**{member}** has been banned from the server",
        color=discord.Color.red(),
    )
    embed.add_field(name="Reason", value=shown_reason, inline=False)
    embed.add_field(name="Moderator", value=ctx.invoker.mention, inline=False)
    embed.add_field(name="Messages Deleted", value=f"{days} days", inline=False)
    embed.timestamp = discord.utils.utcnow()
    await ctx.reply(embed=embed)


PREFIX_COMMANDS = (
    prefix_command(
        "clear",
        clear,
        aliases=("purge", "delete"),
        permissions=("manage_messages",),
        description="Clears a specified number of messages.",
    ),
)

SLASH_COMMANDS = (
    slash_command(ban, permissions=("ban_members",)),
)
