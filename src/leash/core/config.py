"""Leash configuration and decision logging."""

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TextIO

import structlog

USER_CONFIG = Path.home() / ".leash" / "config"
PROJECT_CONFIG_NAME = ".leash"
ENV_CONFIG = "LEASH_CONFIG"


# Config scopes in priority order (lowest to highest)
SCOPE_USER = "user"
SCOPE_PROJECT = "project"
SCOPE_ENV = "env"

# Directives that widen what may be modified. The project directory is
# writable by the agent being guarded, so these are refused there.
RELAXING_DIRECTIVES = frozenset({"platform-path", "temp-path"})


@dataclass
class ProtectRule:
    """A protected-path pattern with origin tracking."""

    pattern: str
    name: str
    source: str | None = None  # file path
    scope: str | None = None  # user/project/env


@dataclass
class Config:
    """Parsed configuration."""

    platform_paths: list[str] = field(default_factory=list)
    """Extra home-relative platform config directories."""

    temp_paths: list[str] = field(default_factory=list)
    """Extra absolute scratch directories treated like /tmp."""

    protect_rules: list[ProtectRule] = field(default_factory=list)
    """Extra protected-path patterns in load order."""

    log: Path | None = None  # None = no logging
    log_full: bool = False  # log full command (requires log path)


# === Config Loading ===


def _find_project_config(cwd: Path) -> Path | None:
    """Walk up from cwd to find .leash file."""
    current = cwd.resolve()
    while True:
        candidate = current / PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:  # reached root
            return None
        current = parent


def _merge_configs(base: Config, overlay: Config) -> Config:
    """Merge overlay config into base. Lists accumulate in order, settings override."""
    return replace(
        base,
        platform_paths=base.platform_paths + overlay.platform_paths,
        temp_paths=base.temp_paths + overlay.temp_paths,
        protect_rules=base.protect_rules + overlay.protect_rules,
        log=overlay.log if overlay.log is not None else base.log,
        log_full=overlay.log_full if overlay.log_full else base.log_full,
    )


def _tag_rules(config: Config, source: str, scope: str) -> Config:
    """Tag all protect rules in config with source file and scope."""
    return replace(
        config,
        protect_rules=[replace(r, source=source, scope=scope) for r in config.protect_rules],
    )


def load_config(cwd: Path) -> Config:
    """Load config from ~/.leash/config, .leash, and $LEASH_CONFIG, in that order."""
    config = Config()

    # 1. User config (lowest priority)
    if USER_CONFIG.is_file():
        user_config = parse_config(USER_CONFIG.read_text(), scope=SCOPE_USER)
        user_config = _tag_rules(user_config, str(USER_CONFIG), SCOPE_USER)
        config = _merge_configs(config, user_config)

    # 2. Project config (walk up from cwd)
    project_path = _find_project_config(cwd)
    if project_path is not None:
        project_config = parse_config(project_path.read_text(), scope=SCOPE_PROJECT)
        project_config = _tag_rules(project_config, str(project_path), SCOPE_PROJECT)
        config = _merge_configs(config, project_config)

    # 3. Env override (highest priority)
    env_path = os.environ.get(ENV_CONFIG)
    if env_path:
        env_config_path = Path(env_path).expanduser()
        if env_config_path.is_file():
            env_config = parse_config(env_config_path.read_text(), scope=SCOPE_ENV)
            env_config = _tag_rules(env_config, str(env_config_path), SCOPE_ENV)
            config = _merge_configs(config, env_config)

    return config


def parse_config(text: str, scope: str = SCOPE_USER) -> Config:
    """Parse config text into Config object. Raises ValueError on syntax errors."""
    platform_paths: list[str] = []
    temp_paths: list[str] = []
    protect_rules: list[ProtectRule] = []
    settings: dict[str, bool | Path] = {}

    for lineno, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(None, 1)
        directive = parts[0].lower()
        rest = parts[1].strip() if len(parts) > 1 else ""

        try:
            if directive in RELAXING_DIRECTIVES and scope == SCOPE_PROJECT:
                raise ValueError(f"'{directive}' is not allowed in a project config")

            if directive == "platform-path":
                if not rest:
                    raise ValueError("requires a directory")
                if rest.startswith(("/", "~")):
                    raise ValueError("platform-path is relative to the home directory")
                platform_paths.append(rest.rstrip("/"))

            elif directive == "temp-path":
                if not rest:
                    raise ValueError("requires a directory")
                if not rest.startswith("/"):
                    raise ValueError("temp-path must be absolute")
                if rest.rstrip("/") == "":
                    raise ValueError("temp-path cannot be /")
                temp_paths.append(rest.rstrip("/"))

            elif directive == "protect":
                if not rest:
                    raise ValueError("requires a pattern")
                pattern, message = _extract_message(rest)
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ValueError(f"invalid pattern '{pattern}': {e}") from None
                protect_rules.append(ProtectRule(pattern, message or pattern))

            elif directive == "set":
                _apply_setting(settings, rest)

            else:
                raise ValueError(f"unknown directive '{directive}'")

        except ValueError as e:
            raise ValueError(f"line {lineno}: {e}") from None

    return Config(
        platform_paths=platform_paths,
        temp_paths=temp_paths,
        protect_rules=protect_rules,
        log=settings.get("log"),
        log_full=settings.get("log_full", False),
    )


def _unescape(s: str) -> str:
    """Unescape backslash sequences in a message string."""
    result = []
    i = 0
    while i < len(s):
        if s[i] == "\\" and i + 1 < len(s):
            next_char = s[i + 1]
            if next_char in ('"', "\\"):
                result.append(next_char)
                i += 2
                continue
        result.append(s[i])
        i += 1
    return "".join(result)


def _extract_message(s: str) -> tuple[str, str | None]:
    """Extract pattern and optional quoted display name from string.

    The name is extracted only if:
    - String ends with unescaped "
    - There's an opening " preceded by whitespace

    Returns (pattern, name) where name may be None.
    """
    s = s.rstrip()
    if not s.endswith('"'):
        return s, None

    # Count trailing backslashes to check if quote is escaped
    j = len(s) - 2
    num_bs = 0
    while j >= 0 and s[j] == "\\":
        num_bs += 1
        j -= 1
    if num_bs % 2 == 1:
        return s, None  # Trailing quote is escaped

    # Find opening quote (must be preceded by whitespace)
    i = len(s) - 2
    while i >= 0:
        if s[i] == '"' and (i == 0 or s[i - 1].isspace()):
            message = _unescape(s[i + 1 : -1])
            pattern = s[:i].rstrip()
            if not pattern:
                raise ValueError("pattern required before name")
            return pattern, message
        i -= 1

    return s, None  # No valid opening quote, treat as pattern


def _apply_setting(settings: dict[str, bool | Path], rest: str) -> None:
    """Parse and apply a 'set' directive. Raises ValueError on invalid setting."""
    if not rest:
        raise ValueError("'set' requires a setting name")

    parts = rest.split(None, 1)
    key = parts[0].lower()
    value = parts[1] if len(parts) > 1 else None
    key_normalized = key.replace("-", "_")

    if key_normalized == "log_full":
        if value is not None:
            raise ValueError(f"'{key}' takes no value")
        settings[key_normalized] = True

    elif key_normalized == "log":
        if value is None:
            raise ValueError("'log' requires a path")
        settings[key_normalized] = Path(value).expanduser()

    else:
        raise ValueError(f"unknown setting '{key}'")


# === Logging ===

_logger: structlog.BoundLogger | None = None
_log_file: TextIO | None = None


def configure_logging(config: Config) -> None:
    """Configure decision logging based on config settings.

    Closes the file opened by any earlier call.
    """
    global _logger, _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None
    _logger = None
    if config.log is None:
        return

    # Ensure log directory exists
    config.log.parent.mkdir(parents=True, exist_ok=True)

    # One JSON object per line, appended to the configured file
    _log_file = open(config.log, "a")
    _logger = structlog.wrap_logger(
        structlog.WriteLogger(_log_file),
        processors=[
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.BoundLogger,
    )
    _logger = _logger.bind(_log_full=config.log_full)


def log_decision(kind: str, subject: str, blocked: bool, reason: str | None = None) -> None:
    """Log a verdict. No-op if logging not configured.

    kind is "command" or "path"; the subject itself is only written with log-full.
    """
    if _logger is None:
        return

    log_full = _logger._context.get("_log_full", False)

    entry: dict[str, str | None] = {"decision": "block" if blocked else "allow"}
    if reason is not None:
        entry["reason"] = reason
    if log_full:
        entry[kind] = subject

    _logger.new().info(kind, **entry)
