"""chmod, chown, chgrp, truncate, ln - every argument must stay in bounds."""

from __future__ import annotations

from leash.commands import HandlerContext, check_all
from leash.core.verdict import Verdict

COMMANDS = ["chmod", "chown", "chgrp", "truncate", "ln"]


def check(ctx: HandlerContext) -> Verdict:
    # truncate -s 0 /dev/null is a common no-op
    allow_device_paths = ctx.base_command == "truncate"
    return check_all(ctx, ctx.paths, allow_device_paths=allow_device_paths)
