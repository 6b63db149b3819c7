"""
Path resolution and zone classification for Leash.

Every zone check goes through the canonical path: shell references expanded,
resolved against a base directory, and followed through symlinks at every
component. A symlink inside the working directory that points elsewhere is
classified by where it points.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from leash.core.patterns import (
    DEVICE_PATHS,
    PLATFORM_PATHS,
    PROTECTED_PATTERNS,
    TEMP_PATHS,
    PatternRule,
)

_VARIABLE = re.compile(r"\$\{?(\w+)\}?")
_TILDE = re.compile(r"^~(?=/|$)")


class UnresolvablePathError(ValueError):
    """Raised when a path depends on something that cannot be determined."""


@dataclass(frozen=True)
class ShellEnvironment:
    """The home directory and variables used to expand ~ and $VAR."""

    home: str | None
    variables: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_process(cls) -> ShellEnvironment:
        try:
            home = str(Path.home())
        except RuntimeError:
            home = None
        return cls(home=home, variables=dict(os.environ))


@dataclass(frozen=True)
class Protection:
    """Result of a protected-path lookup."""

    protected: bool
    name: str | None = None


class PathResolver:
    """Resolves path strings and answers zone questions for one working directory."""

    def __init__(
        self,
        working_directory: str,
        environment: ShellEnvironment | None = None,
        platform_paths: Iterable[str] = (),
        temp_paths: Iterable[str] = (),
        protected_patterns: Iterable[PatternRule] = (),
    ) -> None:
        self.working_directory = os.path.abspath(working_directory)
        self.environment = environment or ShellEnvironment.from_process()
        self.platform_paths = PLATFORM_PATHS + tuple(platform_paths)
        self.temp_paths = TEMP_PATHS + tuple(temp_paths)
        self.protected_patterns = PROTECTED_PATTERNS + tuple(protected_patterns)

    # === Resolution ===

    def _home(self) -> str:
        if not self.environment.home:
            raise UnresolvablePathError("home directory is unknown")
        return self.environment.home

    def expand(self, path: str) -> str:
        """Expand a leading ~ and $NAME / ${NAME} references."""

        def variable(match: re.Match) -> str:
            name = match.group(1)
            if name == "HOME":
                return self._home()
            if name == "PWD":
                return self.working_directory
            return self.environment.variables.get(name, "")

        if _TILDE.match(path):
            path = _TILDE.sub(lambda _: self._home(), path, count=1)
        return _VARIABLE.sub(variable, path)

    def absolute(self, path: str, base: str | None = None) -> str:
        """Expand and make absolute against base, without following symlinks."""
        expanded = self.expand(path)
        return os.path.abspath(os.path.join(base or self.working_directory, expanded))

    def resolve_real(self, path: str, base: str | None = None) -> str:
        """Return the canonical path, following symlinks in every component.

        Paths that do not exist yet still resolve: the existing part of the
        path is canonicalized and the rest is appended.
        """
        resolved = self.absolute(path, base)
        try:
            return os.path.realpath(resolved, strict=True)
        except OSError:
            return os.path.realpath(resolved)

    # === Zones ===

    def _real_working_directory(self) -> str:
        return os.path.realpath(self.working_directory, strict=True)

    def is_within_working_dir(self, path: str) -> bool:
        try:
            real_path = self.resolve_real(path)
            real_work_dir = self._real_working_directory()
        except (OSError, ValueError):
            return False

        if real_path == real_work_dir:
            return True

        rel = os.path.relpath(real_path, real_work_dir)
        return bool(rel) and not rel.startswith("..") and not os.path.isabs(rel)

    @staticmethod
    def _matches_any(resolved: str, roots: Iterable[str]) -> bool:
        return any(resolved == root or resolved.startswith(root + os.sep) for root in roots)

    def is_safe_for_write(self, path: str) -> bool:
        try:
            # /dev/stdout and friends canonicalize into /proc on Linux
            if self.absolute(path) in DEVICE_PATHS:
                return True
            resolved = self.resolve_real(path)
        except (OSError, ValueError):
            return False
        return self._matches_any(resolved, DEVICE_PATHS + self.temp_paths)

    def is_temp_path(self, path: str) -> bool:
        try:
            resolved = self.resolve_real(path)
        except (OSError, ValueError):
            return False
        return self._matches_any(resolved, self.temp_paths)

    def platform_roots(self) -> list[str]:
        """Canonical absolute platform config directories under the home directory."""
        home = self._home()
        return [os.path.realpath(os.path.join(home, p)) for p in self.platform_paths]

    def is_platform_path(self, path: str) -> bool:
        try:
            resolved = self.resolve_real(path)
            roots = self.platform_roots()
        except (OSError, ValueError):
            return False
        return self._matches_any(resolved, roots)

    def is_protected_path(self, path: str) -> Protection:
        """Check a path inside the working directory against protected patterns.

        Paths outside the working directory are never reported as protected;
        the working directory check already blocks them.
        """
        if not self.is_within_working_dir(path):
            return Protection(False)
        try:
            relative = os.path.relpath(self.resolve_real(path), self._real_working_directory())
        except (OSError, ValueError):
            return Protection(False)
        relative = relative.replace(os.sep, "/")
        for rule in self.protected_patterns:
            if rule.search(relative):
                return Protection(True, rule.name)
        return Protection(False)
