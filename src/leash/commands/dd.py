"""dd command handler - only of= is written, if= is read."""

from __future__ import annotations

from leash.commands import HandlerContext, check_target
from leash.core.parser import find_operand
from leash.core.verdict import ALLOWED, Verdict

COMMANDS = ["dd"]


def check(ctx: HandlerContext) -> Verdict:
    dest = find_operand(ctx.command, "of")
    if dest is None:
        # No of=: dd writes to stdout
        return ALLOWED
    return check_target(ctx, dest, allow_device_paths=True)
