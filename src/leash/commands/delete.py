"""rm, rmdir, unlink, shred - every argument is a deletion target."""

from __future__ import annotations

from leash.commands import HandlerContext, check_all
from leash.core.patterns import DELETE_COMMANDS
from leash.core.verdict import Verdict

COMMANDS = sorted(DELETE_COMMANDS)


def check(ctx: HandlerContext) -> Verdict:
    # Deleting a device node is never what was meant; temp dirs only
    return check_all(ctx, ctx.paths, allow_device_paths=False)
