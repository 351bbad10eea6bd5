from datetime import datetime

import discord
from discord import app_commands

from core.dispatcher import CommandContext
from core.registry import PREFIX, SLASH, prefix_command, slash_command
from guild_store import DEFAULT_PREFIX


def ts(dt: datetime | None) -> str:
    if dt is None:
        return "N/A"
    return f"<t:{int(dt.timestamp())}:F>"


def latency_ms(bot) -> int:
    return round(getattr(bot, "latency", 0.0) * 1000)


async def ping_prefix(ctx: CommandContext) -> None:
    sent = await ctx.reply("🏓 Pinging...")
    if sent is None:
        return
    roundtrip = round((sent.created_at - ctx.message.created_at).total_seconds() * 1000)
    await sent.edit(
        content=(
            "🏓 Pong!\n"
            f"**Roundtrip latency:** {roundtrip}ms\n"
            f"**WebSocket heartbeat:** {latency_ms(ctx.bot)}ms"
        )
    )


@app_commands.command(name="ping", description="Check the bot's latency.")
async def ping(ctx: CommandContext) -> None:
    embed = discord.Embed(title="🏓 Pong!", color=discord.Color.green())
    embed.add_field(name="WebSocket Heartbeat", value=f"{latency_ms(ctx.bot)}ms", inline=True)
    embed.timestamp = discord.utils.utcnow()
    await ctx.reply(embed=embed)


@app_commands.command(name="help", description="Show all available commands.")
async def help_command(ctx: CommandContext) -> None:
    registry = ctx.bot.registry
    if ctx.config is not None:
        prefix = ctx.config.prefix
    else:
        prefix = getattr(getattr(ctx.bot, "store", None), "default_prefix", DEFAULT_PREFIX)

    slash_lines = [
        f"`/{descriptor.name}` - {descriptor.description or 'No description.'}"
        for descriptor in sorted(registry.commands(SLASH), key=lambda item: item.name)
    ]
    prefix_lines = []
    for descriptor in sorted(registry.commands(PREFIX), key=lambda item: item.name):
        aliases = ", ".join(sorted(descriptor.aliases))
        suffix = f" (aliases: {aliases})" if aliases else ""
        prefix_lines.append(
            f"`{prefix}{descriptor.name}` - {descriptor.description or 'No description.'}{suffix}"
        )

    embed = discord.Embed(
        title="🤖 Bot Commands",
        description="Here are all the available commands:",
        color=discord.Color.blurple(),
    )
    if slash_lines:
        embed.add_field(name="Slash Commands", value="\n".join(slash_lines)[:1024], inline=False)
    if prefix_lines:
        embed.add_field(name="Prefix Commands", value="\n".join(prefix_lines)[:1024], inline=False)
    embed.set_footer(text=f"Requested by {ctx.invoker}")
    await ctx.reply(embed=embed, ephemeral=True)


@app_commands.command(name="serverinfo", description="Show information about this server.")
@app_commands.guild_only()
async def serverinfo(ctx: CommandContext) -> None:
    guild = ctx.guild
    if guild is None:
        await ctx.reply("This command only works inside a server.", ephemeral=True)
        return

    embed = discord.Embed(title=f"Server info: {guild.name}", color=discord.Color.green())
    if guild.icon:
        embed.set_thumbnail(url=guild.icon.url)
    embed.add_field(name="ID", value=str(guild.id), inline=False)
    embed.add_field(name="Owner", value=f"<@{guild.owner_id}>", inline=False)
    embed.add_field(name="Members", value=str(guild.member_count or "N/A"), inline=False)
    embed.add_field(name="Channels", value=str(len(guild.channels)), inline=False)
    embed.add_field(name="Roles", value=str(len(guild.roles)), inline=False)
    embed.add_field(name="Created", value=ts(guild.created_at), inline=False)
    await ctx.reply(embed=embed)


@app_commands.command(name="profile", description="Show command usage and warnings for a member.")
@app_commands.guild_only()
@app_commands.describe(member="Member to look up. Defaults to you.")
async def profile(ctx: CommandContext, member: discord.Member | None = None) -> None:
    guild = ctx.guild
    if guild is None:
        await ctx.reply("This command only works inside a server.", ephemeral=True)
        return

    target = member or ctx.invoker
    found = await ctx.bot.store.find_user_profile(guild.id, target.id)
    if found is None:
        await ctx.reply(f"{target.mention} has no recorded activity yet.", ephemeral=True)
        return

    embed = discord.Embed(title=f"Profile: {found.username or target}", color=discord.Color.blurple())
    embed.add_field(name="Commands used", value=str(found.commands_used), inline=True)
    embed.add_field(
        name="Warnings",
        value=f"{found.warnings_active} active / {found.warnings_total} total",
        inline=True,
    )
    await ctx.reply(embed=embed, ephemeral=True)


PREFIX_COMMANDS = (
    prefix_command(
        "ping",
        ping_prefix,
        aliases=("latency",),
        cooldown=3,
        description="Shows the bot's latency.",
    ),
)

SLASH_COMMANDS = (
    slash_command(ping),
    slash_command(help_command),
    slash_command(serverinfo),
    slash_command(profile),
)
