from bot_commands import fun, moderation, settings, utility
from core.registry import PREFIX, SLASH, CommandRegistry

PREFIX_COMMANDS = (
    *utility.PREFIX_COMMANDS,
    *fun.PREFIX_COMMANDS,
    *moderation.PREFIX_COMMANDS,
)

SLASH_COMMANDS = (
    *utility.SLASH_COMMANDS,
    *fun.SLASH_COMMANDS,
    *moderation.SLASH_COMMANDS,
    *settings.SLASH_COMMANDS,
)


def build_registry() -> CommandRegistry:
    registry = CommandRegistry()
    registry.register_all(PREFIX_COMMANDS, PREFIX)
    registry.register_all(SLASH_COMMANDS, SLASH)
    registry.freeze()
    return registry
