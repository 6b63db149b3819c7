"""
Rule tables for Leash - dangerous commands, zones, and blocklist patterns.

Everything here is immutable data loaded once at import time. The analyzer
and resolver read these tables; nothing writes to them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class PatternRule:
    """A compiled regex with the display name used in block reasons."""

    pattern: re.Pattern
    name: str

    def search(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rules(*pairs: tuple[str, str]) -> tuple[PatternRule, ...]:
    return tuple(PatternRule(re.compile(p), name) for p, name in pairs)


# === Dangerous Commands ===
# Commands that modify the filesystem - blocked when they target paths
# outside the working directory

DANGEROUS_COMMANDS = frozenset(
    {
        "rm",  # remove files
        "rmdir",  # remove directories
        "unlink",  # remove a single file
        "shred",  # overwrite then remove
        "mv",  # move/rename
        "cp",  # copy, can overwrite destination
        "chmod",  # change mode
        "chown",  # change owner
        "chgrp",  # change group
        "truncate",  # shrink/extend file
        "dd",  # raw copy
        "ln",  # create links
    }
)

# Subset where every path argument is a deletion target
DELETE_COMMANDS = frozenset({"rm", "rmdir", "unlink", "shred"})


# === Wrapper Commands ===
# Commands that run another command; the analyzer looks through them

WRAPPER_COMMANDS = frozenset(
    {
        "sudo",
        "doas",
        "command",
        "builtin",
        "exec",
        "nohup",
        "time",
        "nice",
        "timeout",
        "env",
    }
)

# Wrappers whose first positional argument is a number (niceness, duration)
NUMERIC_ARG_WRAPPERS = frozenset({"nice", "timeout"})

# Wrapper options that consume the following token
WRAPPER_OPTIONS_WITH_ARG = {
    "sudo": frozenset({"-u", "-g", "-h", "-p", "-C", "-D", "-r", "-t", "-T", "-U"}),
    "doas": frozenset({"-u", "-C"}),
    "nice": frozenset({"-n"}),
    "timeout": frozenset({"-s", "-k", "--signal", "--kill-after"}),
    "env": frozenset({"-u", "-C", "-S", "--unset", "--chdir", "--split-string"}),
}


# === Zones ===

DEVICE_PATHS = ("/dev/null", "/dev/stdin", "/dev/stdout", "/dev/stderr")

TEMP_PATHS = (
    "/tmp",
    "/var/tmp",
    # macOS private mount aliases
    "/private/tmp",
    "/private/var/tmp",
)

# Home-relative agent tool config directories
PLATFORM_PATHS = (
    ".claude",
    ".factory",
    ".pi",
    ".config/opencode",
)

# Matched against the path relative to the working directory
PROTECTED_PATTERNS = _rules(
    (r"(^|/)\.env(\.(?!example$)[^/]+)?$", ".env files"),
    (r"(^|/)\.git(/|$)", ".git directory"),
)


# === Blocklist Patterns ===

# Compound shell idioms that delete or overwrite whatever paths they mention
DANGEROUS_PATTERNS = _rules(
    (r"\bfind\b.*\s-delete\b", "find -delete"),
    (r"\bfind\b.*-exec\s+(rm|mv|cp)\b", "find -exec"),
    (r"\bxargs\s+(-[^\s]+\s+)*(rm|mv|cp)\b", "xargs"),
    (r"\brsync\b.*--delete\b", "rsync --delete"),
)

# git followed by any global options before the subcommand:
# -C <dir>, -c <key=value>, --git-dir <dir>, --no-pager, --work-tree=<dir>
_GIT = (
    r"\bgit(?:\s+(?:-[Cc]\s+\S+|--(?:git-dir|work-tree|namespace)\s+\S+"
    r"|--?[\w-]+(?:=\S+)?))*\s+"
)

# Git subcommands that destroy history or uncommitted work, anywhere
DANGEROUS_GIT_PATTERNS = _rules(
    (_GIT + r"checkout\b.*\s--\s", "git checkout --"),
    (_GIT + r"restore\s+(?!--staged)", "git restore"),
    (_GIT + r"reset\s+.*--hard\b", "git reset --hard"),
    (_GIT + r"reset\s+.*--merge\b", "git reset --merge"),
    (_GIT + r"clean\s+.*(-[a-zA-Z]*f[a-zA-Z]*|--force)\b", "git clean --force"),
    (_GIT + r"push\s+.*(-f|--force)\b", "git push --force"),
    (_GIT + r"branch\s+.*-D\b", "git branch -D"),
    (_GIT + r"stash\s+drop\b", "git stash drop"),
    (_GIT + r"stash\s+clear\b", "git stash clear"),
)


# === Redirects ===

# > or >> followed by a double-quoted, single-quoted, or bare target.
# Bare targets never start with & (fd duplication like 2>&1).
REDIRECT_PATTERN = re.compile(r""">{1,2}\s*(?:"([^"]+)"|'([^']+)'|([^\s;|&>]+))""")

# Markers of shell substitutions whose result cannot be known statically
SUBSTITUTION_MARKERS = ("$(", "`", "<(", ">(")
