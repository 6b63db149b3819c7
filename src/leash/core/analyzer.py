"""
Command analyzer for Leash.

Runs a raw command string through the checks in order: dangerous git
subcommands, output redirects, command substitutions, compound destructive
idioms, then each chain link. Once a cd appears, every check runs link by
link against the directory tracked across it; subshell groups, substitutions
and ``env -S`` strings are analyzed as commands of their own. The first block
wins; everything else is allowed.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from leash.commands import HandlerContext, anchor, display_path, get_handler
from leash.core.config import Config, log_decision
from leash.core.parser import (
    env_split_command,
    extract_cd_target,
    extract_paths,
    extract_redirect_targets,
    extract_substitutions,
    get_base_command,
    has_substitution,
    is_cd_command,
    split_commands,
    subshell_group,
)
from leash.core.paths import PathResolver, ShellEnvironment
from leash.core.patterns import (
    DANGEROUS_COMMANDS,
    DANGEROUS_GIT_PATTERNS,
    DANGEROUS_PATTERNS,
    PatternRule,
)
from leash.core.verdict import ALLOWED, Verdict, block

# How deep $(...) inside $(...) is followed before giving up
MAX_SUBSTITUTION_DEPTH = 8


def check_dangerous_git_commands(command: str) -> Verdict:
    """Block git subcommands that destroy history, wherever they run."""
    for rule in DANGEROUS_GIT_PATTERNS:
        if rule.search(command):
            return block(f"Dangerous git command blocked: {rule.name}")
    return ALLOWED


def check_redirects(command: str, resolver: PathResolver, base: str | None = None) -> Verdict:
    """Check every > and >> target is somewhere writes are allowed."""
    for path in extract_redirect_targets(command):
        if has_substitution(path):
            return block(f"Redirect target cannot be verified: {path}")
        target = anchor(resolver, path, base)
        if not (
            resolver.is_safe_for_write(target)
            or resolver.is_within_working_dir(target)
            or resolver.is_platform_path(target)
        ):
            shown = display_path(resolver, path, base)
            return block(f"Redirect to path outside working directory: {shown}")
        protection = resolver.is_protected_path(target)
        if protection.protected:
            return block(f"Redirect targets protected path: {protection.name}")
    return ALLOWED


def check_dangerous_patterns(
    command: str, resolver: PathResolver, base: str | None = None
) -> Verdict:
    """Check find/xargs/rsync idioms only touch paths inside allowed zones."""
    for rule in DANGEROUS_PATTERNS:
        if not rule.search(command):
            continue
        context = f'Command "{rule.name}"'
        for path in extract_paths(command):
            if has_substitution(path):
                return block(f"{context} uses a path that cannot be verified: {path}")
            target = anchor(resolver, path, base)
            if not (
                resolver.is_within_working_dir(target)
                or resolver.is_temp_path(target)
                or resolver.is_platform_path(target)
            ):
                shown = display_path(resolver, path, base)
                return block(f"{context} targets path outside working directory: {shown}")
            protection = resolver.is_protected_path(target)
            if protection.protected:
                return block(f"{context} targets protected path: {protection.name}")
    return ALLOWED


def check_dangerous_command(
    command: str, resolver: PathResolver, base: str | None = None
) -> Verdict:
    """Validate a single chain link whose base command modifies files."""
    base_command = get_base_command(command)
    if base_command not in DANGEROUS_COMMANDS:
        return ALLOWED

    handler = get_handler(base_command)
    if handler is None:
        return block(f'Command "{base_command}" has no validation rule')

    ctx = HandlerContext(
        command=command,
        base_command=base_command,
        paths=tuple(extract_paths(command)),
        resolver=resolver,
        resolve_base=base,
    )
    return handler.check(ctx)


def _check_unknown_directory(command: str) -> Verdict:
    """Block path-sensitive commands run after a cd whose target cannot be known."""
    base_command = get_base_command(command)
    if base_command in DANGEROUS_COMMANDS:
        return block(f'Command "{base_command}" runs in a directory that cannot be determined')
    for rule in DANGEROUS_PATTERNS:
        if rule.search(command):
            return block(f'Command "{rule.name}" runs in a directory that cannot be determined')
    return ALLOWED


class CommandAnalyzer:
    """Decides whether commands and file paths stay inside one working directory."""

    def __init__(
        self,
        working_directory: str | Path,
        config: Config | None = None,
        environment: ShellEnvironment | None = None,
    ) -> None:
        config = config or Config()
        self.working_directory = os.path.abspath(working_directory)
        self.resolver = PathResolver(
            self.working_directory,
            environment=environment,
            platform_paths=config.platform_paths,
            temp_paths=config.temp_paths,
            protected_patterns=[
                PatternRule(re.compile(rule.pattern), rule.name) for rule in config.protect_rules
            ],
        )

    def analyze(self, command: str) -> Verdict:
        """Analyze a raw command string."""
        previous = self.resolver.environment.variables.get("OLDPWD")
        result = self._analyze(command, 0, self.working_directory, previous)
        log_decision("command", command, result.blocked, result.reason)
        return result

    def validate_path(self, path: str | None) -> Verdict:
        """Validate the target of a file write or edit."""
        result = self._validate_path(path)
        log_decision("path", path or "", result.blocked, result.reason)
        return result

    def _validate_path(self, path: str | None) -> Verdict:
        if not path:
            return ALLOWED

        resolver = self.resolver
        if not (
            resolver.is_safe_for_write(path)
            or resolver.is_within_working_dir(path)
            or resolver.is_platform_path(path)
        ):
            return block(f"File operation targets path outside working directory: {path}")

        protection = resolver.is_protected_path(path)
        if protection.protected:
            return block(f"File operation targets protected path: {protection.name}")
        return ALLOWED

    def _base(self, directory: str) -> str | None:
        return directory if directory != self.working_directory else None

    def _analyze(
        self, command: str, depth: int, directory: str | None, previous: str | None
    ) -> Verdict:
        """Analyze command as run from directory (None when it cannot be known).

        previous is the directory ``cd -`` returns to.
        """
        if not command or not command.strip():
            return ALLOWED

        result = check_dangerous_git_commands(command)
        if result.blocked:
            return result

        links = split_commands(command)

        # A cd changes what relative paths mean from one link to the next, so
        # the checks then run link by link against the tracked directory
        if directory is None or any(is_cd_command(link) for link in links):
            return self._check_links(links, depth, directory, previous)

        base = self._base(directory)
        result = check_redirects(command, self.resolver, base)
        if result.blocked:
            return result

        result = self._check_substitutions(command, depth, directory, previous)
        if result.blocked:
            return result

        result = check_dangerous_patterns(command, self.resolver, base)
        if result.blocked:
            return result

        for link in links:
            result = self._check_command(link, depth, directory, previous)
            if result.blocked:
                return result
        return ALLOWED

    def _check_substitutions(
        self, command: str, depth: int, directory: str | None, previous: str | None
    ) -> Verdict:
        """Analyze the commands inside $(...), backticks and process substitutions."""
        for inner in extract_substitutions(command):
            if depth >= MAX_SUBSTITUTION_DEPTH:
                return block("Command substitution nested too deeply to analyze")
            result = self._analyze(inner, depth + 1, directory, previous)
            if result.blocked:
                return block(f"Command substitution: {result.reason}")
        return ALLOWED

    def _check_redirects(self, command: str, directory: str | None) -> Verdict:
        if directory is not None:
            return check_redirects(command, self.resolver, self._base(directory))
        for path in extract_redirect_targets(command):
            if not path.startswith(("/", "~")):
                return block(f"Redirect to {path} in a directory that cannot be determined")
        # Only position-independent targets are left
        return check_redirects(command, self.resolver)

    def _check_links(
        self, links: list[str], depth: int, directory: str | None, previous: str | None
    ) -> Verdict:
        """Walk chain links in order, following cd for relative path resolution."""
        current_dir, previous_dir = directory, previous
        for link in links:
            result = self._check_link(link, depth, current_dir, previous_dir)
            if result.blocked:
                return result
            if is_cd_command(link):
                current_dir, previous_dir = self._change_directory(
                    link, current_dir, previous_dir
                )
        return ALLOWED

    def _check_link(
        self, link: str, depth: int, directory: str | None, previous: str | None
    ) -> Verdict:
        # A group's body is analyzed on its own; only what follows the
        # closing paren runs in directory
        group = subshell_group(link)
        outside = group[1] if group is not None else link

        # Redirects and substitutions of a cd link happen before it changes
        # directory
        result = self._check_redirects(outside, directory)
        if result.blocked:
            return result
        result = self._check_substitutions(outside, depth, directory, previous)
        if result.blocked:
            return result

        if group is None and is_cd_command(link):
            return ALLOWED
        if group is None and directory is not None:
            result = check_dangerous_patterns(link, self.resolver, self._base(directory))
            if result.blocked:
                return result
        return self._check_command(link, depth, directory, previous)

    def _check_command(
        self, link: str, depth: int, directory: str | None, previous: str | None
    ) -> Verdict:
        """Validate what a single link runs: a subshell group, env -S, or a command."""
        group = subshell_group(link)
        if group is not None:
            # cd inside ( ... ) does not outlive the group
            return self._analyze(group[0], depth, directory, previous)

        inner = env_split_command(link)
        if inner is not None:
            return self._analyze(inner, depth, directory, previous)

        if directory is None:
            return _check_unknown_directory(link)
        return check_dangerous_command(link, self.resolver, self._base(directory))

    def _change_directory(
        self, link: str, current_dir: str | None, previous_dir: str | None
    ) -> tuple[str | None, str | None]:
        """Return (new current dir, new previous dir) after a cd link; None is unknown."""
        target = extract_cd_target(link)
        if target is None:
            return current_dir, previous_dir
        if target == "-":
            return previous_dir, current_dir
        if has_substitution(target):
            return None, current_dir
        try:
            expanded = self.resolver.expand(target)
        except ValueError:
            return None, current_dir
        if current_dir is None and not os.path.isabs(expanded):
            return None, current_dir
        return os.path.abspath(os.path.join(current_dir or "/", expanded)), current_dir
