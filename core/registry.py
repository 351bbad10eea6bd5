from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import discord
from discord import app_commands

PREFIX = "prefix"
SLASH = "slash"
NAMESPACES = (PREFIX, SLASH)
DEFAULT_COOLDOWN_SECONDS = 3

Handler = Callable[[Any], Awaitable[Any]]


class CommandRegistryError(Exception):
    pass


class DuplicateCommandError(CommandRegistryError):
    def __init__(self, name: str, namespace: str) -> None:
        super().__init__(f"Command '{name}' is already registered in namespace '{namespace}'.")
        self.name = name
        self.namespace = namespace


class AliasConflictError(CommandRegistryError):
    def __init__(self, alias: str, namespace: str, owner: str) -> None:
        super().__init__(
            f"Alias '{alias}' in namespace '{namespace}' collides with command '{owner}'."
        )
        self.alias = alias
        self.namespace = namespace
        self.owner = owner


class RegistryFrozenError(CommandRegistryError):
    pass


@dataclass(frozen=True)
class CommandDescriptor:
    name: str
    handler: Handler
    aliases: frozenset[str] = field(default_factory=frozenset)
    required_permissions: frozenset[str] = field(default_factory=frozenset)
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS
    description: str = ""
    schema: app_commands.Command | None = None

    def __post_init__(self) -> None:
        if not self.name or any(char.isspace() for char in self.name):
            raise ValueError(f"Invalid command name: {self.name!r}")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be zero or positive.")
        object.__setattr__(self, "name", self.name.lower())
        object.__setattr__(self, "aliases", frozenset(alias.lower() for alias in self.aliases))
        object.__setattr__(self, "required_permissions", frozenset(self.required_permissions))


def _validate_permissions(permissions: Iterable[str]) -> frozenset[str]:
    flags = frozenset(permissions)
    unknown = sorted(flag for flag in flags if flag not in discord.Permissions.VALID_FLAGS)
    if unknown:
        raise ValueError(f"Unknown permission flags: {', '.join(unknown)}")
    return flags


def prefix_command(
    name: str,
    handler: Handler,
    *,
    aliases: Iterable[str] = (),
    permissions: Iterable[str] = (),
    cooldown: int = DEFAULT_COOLDOWN_SECONDS,
    description: str = "",
) -> CommandDescriptor:
    return CommandDescriptor(
        name=name,
        handler=handler,
        aliases=frozenset(aliases),
        required_permissions=_validate_permissions(permissions),
        cooldown_seconds=cooldown,
        description=description,
    )


def slash_command(
    app_command: app_commands.Command,
    *,
    permissions: Iterable[str] = (),
    cooldown: int = DEFAULT_COOLDOWN_SECONDS,
) -> CommandDescriptor:
    """Wrap an app command so its callback runs through the dispatcher.

    The callback receives the command context first and the interaction
    options as keyword arguments.
    """
    callback = app_command.callback

    async def handler(context: Any) -> Any:
        return await callback(context, **context.options)

    return CommandDescriptor(
        name=app_command.name,
        handler=handler,
        required_permissions=_validate_permissions(permissions),
        cooldown_seconds=cooldown,
        description=app_command.description,
        schema=app_command,
    )


class CommandRegistry:
    def __init__(self) -> None:
        self._lookup: dict[str, dict[str, CommandDescriptor]] = {
            namespace: {} for namespace in NAMESPACES
        }
        self._descriptors: dict[str, list[CommandDescriptor]] = {
            namespace: [] for namespace in NAMESPACES
        }
        self._frozen = False

    @staticmethod
    def _check_namespace(namespace: str) -> None:
        if namespace not in NAMESPACES:
            raise ValueError(f"Unknown command namespace: {namespace}")

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, descriptor: CommandDescriptor, namespace: str) -> None:
        self._check_namespace(namespace)
        if self._frozen:
            raise RegistryFrozenError("The command registry is read-only after load.")

        lookup = self._lookup[namespace]
        existing = lookup.get(descriptor.name)
        if existing is not None:
            if existing.name == descriptor.name:
                raise DuplicateCommandError(descriptor.name, namespace)
            raise AliasConflictError(descriptor.name, namespace, existing.name)

        for alias in descriptor.aliases:
            if alias == descriptor.name:
                continue
            owner = lookup.get(alias)
            if owner is not None:
                raise AliasConflictError(alias, namespace, owner.name)

        lookup[descriptor.name] = descriptor
        for alias in descriptor.aliases:
            lookup[alias] = descriptor
        self._descriptors[namespace].append(descriptor)

    def register_all(self, descriptors: Iterable[CommandDescriptor], namespace: str) -> None:
        for descriptor in descriptors:
            self.register(descriptor, namespace)

    def freeze(self) -> None:
        if self._frozen:
            return
        self._lookup = {
            namespace: MappingProxyType(dict(lookup))
            for namespace, lookup in self._lookup.items()
        }
        self._descriptors = {
            namespace: tuple(items) for namespace, items in self._descriptors.items()
        }
        self._frozen = True

    def resolve(self, token: str, namespace: str) -> CommandDescriptor | None:
        self._check_namespace(namespace)
        if not token:
            return None
        return self._lookup[namespace].get(token.lower())

    def commands(self, namespace: str) -> tuple[CommandDescriptor, ...]:
        self._check_namespace(namespace)
        return tuple(self._descriptors[namespace])

    def __len__(self) -> int:
        return sum(len(items) for items in self._descriptors.values())
