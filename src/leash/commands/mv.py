"""
mv command handler.

The destination may be a device or temp path like any write. Sources are
removed from where they are, so they get the stricter delete rule: inside
the working directory, a platform directory, or a temp dir.
"""

from __future__ import annotations

from leash.commands import HandlerContext, check_all, check_target
from leash.commands.cp import destination
from leash.core.verdict import ALLOWED, Verdict

COMMANDS = ["mv"]


def check(ctx: HandlerContext) -> Verdict:
    dest = destination(ctx)
    if dest is None:
        return ALLOWED

    result = check_target(ctx, dest, allow_device_paths=True)
    if result.blocked:
        return result

    sources = list(ctx.paths)
    if dest in sources:
        # Drop the last occurrence, which is the destination operand
        del sources[len(sources) - 1 - sources[::-1].index(dest)]
    return check_all(ctx, sources, allow_device_paths=False)
