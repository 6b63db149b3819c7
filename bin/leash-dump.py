#!/usr/bin/env python3
"""
Debug helper for inspecting how Leash reads a command.

Usage:
    python bin/leash-dump.py 'command to analyze' [working-directory]

Prints each chain link with its base command, path arguments and redirect
targets, the command substitutions found, and the final verdict. Useful
when a command is blocked or allowed unexpectedly.
"""

import os
import sys
from pathlib import Path

from leash.core.analyzer import CommandAnalyzer
from leash.core.config import load_config
from leash.core.parser import (
    extract_cd_target,
    extract_paths,
    extract_redirect_targets,
    extract_substitutions,
    get_base_command,
    is_cd_command,
    split_commands,
)


def dump_link(index, link):
    print(f"Link {index}: {link!r}")
    print(f"  base: {get_base_command(link)!r}")
    if is_cd_command(link):
        print(f"  cd target: {extract_cd_target(link)!r}")
        return
    print(f"  paths: {extract_paths(link)}")
    redirects = extract_redirect_targets(link)
    if redirects:
        print(f"  redirects: {redirects}")


def main():
    if len(sys.argv) < 2:
        print("Usage: leash-dump.py 'command' [working-directory]")
        print("Example: leash-dump.py 'cd ~/tmp && rm -rf build'")
        sys.exit(1)

    command = sys.argv[1]
    cwd = sys.argv[2] if len(sys.argv) > 2 else os.getcwd()
    print(f"Analyzing: {command!r}")
    print(f"Working directory: {cwd}")
    print("-" * 40)

    for i, link in enumerate(split_commands(command)):
        dump_link(i, link)

    substitutions = extract_substitutions(command)
    if substitutions:
        print(f"Substitutions: {substitutions}")

    try:
        config = load_config(Path(cwd))
    except ValueError as e:
        print(f"Config error: {e}")
        sys.exit(1)

    verdict = CommandAnalyzer(cwd, config=config).analyze(command)
    print("-" * 40)
    if verdict.blocked:
        print(f"BLOCKED: {verdict.reason}")
        sys.exit(2)
    print("ALLOWED")


if __name__ == "__main__":
    main()
