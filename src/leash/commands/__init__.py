"""
Per-command validation handlers for Leash.

Each handler module exports:
- COMMANDS: list[str] - dangerous command names this handler validates
- check(ctx: HandlerContext) -> Verdict - validate the command's path arguments
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Protocol

from leash.core.parser import has_substitution
from leash.core.paths import PathResolver
from leash.core.verdict import ALLOWED, Verdict, block


@dataclass(frozen=True)
class HandlerContext:
    """Context passed to handlers."""

    command: str
    """The chain link being validated, e.g. "rm -rf ./build"."""

    base_command: str
    """Basename of the command actually run, wrappers looked through."""

    paths: tuple[str, ...]
    """Candidate path arguments in positional order."""

    resolver: PathResolver

    resolve_base: str | None = None
    """Directory relative paths resolve against when a cd changed it."""


class CommandHandler(Protocol):
    """Protocol for command handler modules."""

    def check(self, ctx: HandlerContext) -> Verdict:
        """Validate the command's targets.

        Args:
            ctx: Handler context with the command and its path arguments

        Returns a blocked Verdict naming the offending path, or ALLOWED.
        """
        ...


def anchor(resolver: PathResolver, path: str, base: str | None) -> str:
    """Path to classify: anchored to the tracked directory when a cd moved it."""
    if base is None:
        return path
    try:
        return resolver.absolute(path, base)
    except ValueError:
        # Unexpandable; the zone checks fail closed on the raw form
        return path


def _target(ctx: HandlerContext, path: str) -> str:
    return anchor(ctx.resolver, path, ctx.resolve_base)


def display_path(resolver: PathResolver, path: str, base: str | None = None) -> str:
    """Absolute form of a path for block reasons."""
    try:
        return resolver.absolute(path, base)
    except ValueError:
        return path


def is_path_allowed(ctx: HandlerContext, path: str, allow_device_paths: bool) -> bool:
    """Check whether a path lies in a zone the command may modify.

    Inside the working directory and platform config directories is always
    allowed. Otherwise device paths and temp dirs are allowed for writes,
    temp dirs only for deletes and move sources.
    """
    target = _target(ctx, path)
    resolver = ctx.resolver
    if resolver.is_within_working_dir(target):
        return True
    if resolver.is_platform_path(target):
        return True
    if allow_device_paths:
        return resolver.is_safe_for_write(target)
    return resolver.is_temp_path(target)


def check_protected(ctx: HandlerContext, path: str, context: str) -> Verdict:
    protection = ctx.resolver.is_protected_path(_target(ctx, path))
    if protection.protected:
        return block(f"{context} targets protected path: {protection.name}")
    return ALLOWED


def check_target(ctx: HandlerContext, path: str, allow_device_paths: bool) -> Verdict:
    """Validate one path argument: verifiable, in an allowed zone, not protected."""
    context = f'Command "{ctx.base_command}"'
    if has_substitution(path):
        return block(f"{context} uses a path that cannot be verified: {path}")
    if not is_path_allowed(ctx, path, allow_device_paths):
        shown = display_path(ctx.resolver, path, ctx.resolve_base)
        return block(f"{context} targets path outside working directory: {shown}")
    return check_protected(ctx, path, context)


def check_all(ctx: HandlerContext, paths, allow_device_paths: bool) -> Verdict:
    """Validate paths in order, returning the first block."""
    for path in paths:
        result = check_target(ctx, path, allow_device_paths)
        if result.blocked:
            return result
    return ALLOWED


def _discover_handlers() -> dict[str, str]:
    """Discover handler modules and build command -> module mapping."""
    handlers = {}
    commands_dir = Path(__file__).parent
    for file in commands_dir.glob("*.py"):
        if file.name.startswith("_"):
            continue
        module_name = file.stem
        module = importlib.import_module(f".{module_name}", package="leash.commands")
        for cmd in getattr(module, "COMMANDS", []):
            handlers[cmd] = module_name
    return handlers


# Build handler mapping at import time
KNOWN_HANDLERS = _discover_handlers()


def get_handler(command_name: str) -> Optional[CommandHandler]:
    """
    Get the handler module for a dangerous command.

    Returns None if no handler exists for the command.
    """
    module_name = KNOWN_HANDLERS.get(command_name)
    if not module_name:
        return None

    return _load_handler(module_name)


@lru_cache(maxsize=32)
def _load_handler(module_name: str) -> CommandHandler:
    """Load a handler module by name (cached within process)."""
    return importlib.import_module(f".{module_name}", package="leash.commands")
