"""cp command handler - only the destination is written."""

from __future__ import annotations

from leash.commands import HandlerContext, check_target
from leash.core.parser import find_option_value
from leash.core.verdict import ALLOWED, Verdict

COMMANDS = ["cp"]

TARGET_DIRECTORY_FLAGS = ("-t", "--target-directory")


def destination(ctx: HandlerContext) -> str | None:
    """Return the path cp or mv writes to: -t DIR, else the last path."""
    target = find_option_value(ctx.command, TARGET_DIRECTORY_FLAGS)
    if target:
        return target
    return ctx.paths[-1] if ctx.paths else None


def check(ctx: HandlerContext) -> Verdict:
    """Check the destination; sources are only read."""
    dest = destination(ctx)
    if dest is None:
        return ALLOWED
    return check_target(ctx, dest, allow_device_paths=True)
