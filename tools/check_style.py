#!/usr/bin/env python3
"""Check Leash source for constructions that break the guard's contract.

Leash runs inside a host hook that owns stdout and stderr, decides only from
the environment it is handed, and keeps ``leash.core`` a namespace package.

    Rule                        Why                                  Instead
    --------------------------  -----------------------------------  ------------------------
    import shlex                quote and operator rules differ      leash.core.parser
                                from the analyzer's
    except:                     hides a failed check                 name the exception
    print(), sys.stdout/stderr  the host adapter owns the streams    config.log_decision
    os.environ, os.getcwd,      a verdict must follow from the       ShellEnvironment,
    os.path.expanduser          ShellEnvironment and working dir     PathResolver.expand
    src/leash/core/__init__.py  core is a namespace package          delete it

Usage: check_style.py [PACKAGE_DIR]   (default: src/leash)
"""

import ast
import os
import sys

BANNED_MODULES = frozenset({"shlex"})
BANNED_STREAMS = frozenset({"stdout", "stderr"})
# Reads of the live process environment
PROCESS_STATE = frozenset({"os.environ", "os.getcwd", "os.getcwdb", "os.path.expanduser"})
# Modules that build the ShellEnvironment or load config from the process
PROCESS_STATE_ALLOWED = frozenset({os.path.join("core", "paths.py"), os.path.join("core", "config.py")})
NAMESPACE_PACKAGES = (os.path.join("core", "__init__.py"),)


def find_python_files(directory):
    """Find all .py files recursively."""
    result = []
    for root, dirs, files in os.walk(directory):
        dirs[:] = [d for d in dirs if d != "__pycache__"]
        for f in files:
            if f.endswith(".py"):
                result.append(os.path.join(root, f))
    result.sort()
    return result


def _dotted(node):
    """Return "os.path.expanduser" for an attribute chain, or None."""
    parts = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if not isinstance(node, ast.Name):
        return None
    parts.append(node.id)
    return ".".join(reversed(parts))


def check_file(filepath, relpath=""):
    """Return (lineno, description) for each violation in one file.

    relpath is the file's path inside the package, used for per-module
    allowances.
    """
    with open(filepath) as f:
        source = f.read()

    tree = ast.parse(source, filepath)
    errors = []
    reads_process = relpath in PROCESS_STATE_ALLOWED

    for node in ast.walk(tree):
        lineno = getattr(node, "lineno", 0)

        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name in BANNED_MODULES:
                    errors.append((lineno, f"import {alias.name}: banned, use leash.core.parser"))

        elif isinstance(node, ast.ImportFrom):
            if node.module in BANNED_MODULES:
                errors.append((lineno, f"from {node.module} import: banned, use leash.core.parser"))
            elif node.module == "sys" and any(a.name in BANNED_STREAMS for a in node.names):
                errors.append((lineno, "from sys import stdout/stderr: the host owns the streams"))

        elif isinstance(node, ast.ExceptHandler) and node.type is None:
            errors.append((lineno, "bare except: banned, name the exception"))

        elif isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append((lineno, "print(): the host owns stdout, log through log_decision"))

        elif isinstance(node, ast.Attribute):
            name = _dotted(node)
            if name in ("sys.stdout", "sys.stderr"):
                errors.append((lineno, f"{name}: the host owns the streams"))
            elif not reads_process and name in PROCESS_STATE:
                errors.append((lineno, f"{name}: read the environment through ShellEnvironment"))

    return errors


def check_layout(package_dir):
    """Return (relpath, description) for files that must not exist in the package."""
    errors = []
    for relpath in NAMESPACE_PACKAGES:
        if os.path.exists(os.path.join(package_dir, relpath)):
            errors.append((relpath, f"{os.path.dirname(relpath)} must stay a namespace package"))
    return errors


def main():
    src_dir = "src/leash"
    if len(sys.argv) > 1:
        src_dir = sys.argv[1]

    if not os.path.isdir(src_dir):
        print(f"Directory not found: {src_dir}")
        sys.exit(1)

    files = find_python_files(src_dir)
    if not files:
        print(f"No Python files found in: {src_dir}")
        sys.exit(1)

    all_errors = [
        (os.path.join(src_dir, relpath), 0, description)
        for relpath, description in check_layout(src_dir)
    ]
    for filepath in files:
        try:
            errors = check_file(filepath, os.path.relpath(filepath, src_dir))
        except SyntaxError as e:
            print(f"Syntax error in {filepath}: {e}")
            sys.exit(1)
        for lineno, description in errors:
            all_errors.append((filepath, lineno, description))

    if not all_errors:
        sys.exit(0)

    print(f"Found {len(all_errors)} violation(s):")
    for filepath, lineno, description in sorted(all_errors):
        print(f"  {filepath}:{lineno}: {description}")
    sys.exit(1)


if __name__ == "__main__":
    main()
