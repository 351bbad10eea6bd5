import random
import re

import discord
from discord import app_commands

from core.dispatcher import CommandContext
from core.registry import prefix_command, slash_command

DICE_RE = re.compile(r"^(\d+)?d(\d+)$", re.IGNORECASE)
MAX_DICE = 10
MAX_SIDES = 100

EIGHT_BALL_RESPONSES = (
    "It is certain.",
    "It is decidedly so.",
    "Without a doubt.",
    "Yes definitely.",
    "You may rely on it.",
    "As I see it, yes.",
    "Most likely.",
    "Outlook good.",
    "Yes.",
    "Signs point to yes.",
    "Reply hazy, try again.",
    "Ask again later.",
    "Better not tell you now.",
    "Cannot predict now.",
    "Concentrate and ask again.",
    "Don't count on it.",
    "My reply is no.",
    "My sources say no.",
    "Outlook not so good.",
    "Very doubtful.",
)

_rng = random.Random()


def parse_dice(notation: str) -> tuple[int, int] | None:
    match = DICE_RE.fullmatch(notation.strip())
    if match is None:
        return None
    return int(match.group(1) or 1), int(match.group(2))


def roll_dice(count: int, sides: int, rng: random.Random = _rng) -> list[int]:
    return [rng.randint(1, sides) for _ in range(count)]


async def roll(ctx: CommandContext) -> None:
    notation = ctx.args[0] if ctx.args else "1d6"
    parsed = parse_dice(notation)
    if parsed is None:
        await ctx.reply("❌ Invalid dice format! Use format like `1d6`, `2d20`, etc.")
        return

    count, sides = parsed
    if count < 1 or sides < 1:
        await ctx.reply("❌ You need at least one die with at least one side!")
        return
    if count > MAX_DICE:
        await ctx.reply(f"❌ You can only roll up to {MAX_DICE} dice at once!")
        return
    if sides > MAX_SIDES:
        await ctx.reply(f"❌ Dice can only have up to {MAX_SIDES} sides!")
        return

    rolls = roll_dice(count, sides)
    await ctx.reply(
        f"🎲 **{notation.upper()}**\n"
        f"**Rolls:** {', '.join(str(value) for value in rolls)}\n"
        f"**Total:** {sum(rolls)}"
    )


@app_commands.command(name="8ball", description="Ask the magic 8-ball a question.")
@app_commands.describe(question="Your question for the 8-ball.")
async def eight_ball(ctx: CommandContext, question: str) -> None:
    embed = discord.Embed(title="🎱 Magic 8-Ball", color=discord.Color(0x9932CC))
    embed.add_field(name="Question", value=question[:1024], inline=False)
    embed.add_field(name="Answer", value=_rng.choice(EIGHT_BALL_RESPONSES), inline=False)
    embed.set_footer(text=f"Asked by {ctx.invoker}")
    embed.timestamp = discord.utils.utcnow()
    await ctx.reply(embed=embed)


@app_commands.command(name="coinflip", description="Flip a coin.")
async def coinflip(ctx: CommandContext) -> None:
    result = "Heads" if _rng.random() < 0.5 else "Tails"
    embed = discord.Embed(
        title="🪙 Coin Flip",
        description=f"**{result}**",
        color=discord.Color(0xFFD700 if result == "Heads" else 0xC0C0C0),
    )
    embed.set_footer(text=f"Flipped by {ctx.invoker}")
    await ctx.reply(embed=embed)


PREFIX_COMMANDS = (
    prefix_command(
        "roll",
        roll,
        aliases=("dice",),
        description="Roll dice (e.g. 2d6).",
    ),
)

SLASH_COMMANDS = (
    slash_command(eight_ball),
    slash_command(coinflip),
)
