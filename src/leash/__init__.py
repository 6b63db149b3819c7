"""
Leash - keeps a coding agent's shell commands inside its working directory.

Blocks commands and file writes that would modify anything outside the
working directory, temp dirs, and agent config directories.
"""

from __future__ import annotations

__version__ = "0.1.0"

from leash.core.analyzer import CommandAnalyzer
from leash.core.config import Config, load_config
from leash.core.paths import PathResolver, ShellEnvironment
from leash.core.verdict import Verdict

__all__ = [
    "CommandAnalyzer",
    "Config",
    "PathResolver",
    "ShellEnvironment",
    "Verdict",
    "load_config",
    "__version__",
]
