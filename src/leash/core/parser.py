"""
Shell command parsing for Leash.

Splits raw command strings into chain links and words with a small
character state machine (Normal, InSingle, InDouble), and pulls out the
pieces the analyzer validates: base command, path arguments, cd targets,
redirect targets, and command substitutions.
"""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass

import bashlex

from leash.core.patterns import (
    NUMERIC_ARG_WRAPPERS,
    REDIRECT_PATTERN,
    SUBSTITUTION_MARKERS,
    WRAPPER_COMMANDS,
    WRAPPER_OPTIONS_WITH_ARG,
)

# NAME=value shell assignment (FOO=bar cmd, env FOO=bar cmd)
_ENV_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
# name=value operand (of=/tmp/x, --target-directory=dir)
_OPERAND_ASSIGNMENT = re.compile(r"^-*[A-Za-z_][\w.-]*=")
# Redirect operator at the start of a word (>, >>, 2>, &>, <, 2>&1, ...)
_REDIRECT_WORD = re.compile(r"^(\d*(>>?|<)|&>>?)(&?)")
# timeout/nice durations: 5, 1.5, 10s, 2m
_NUMBER = re.compile(r"^-?\d+(\.\d+)?[smhd]?$")
# Brace group reserved word at the start of a link ({ cd src; make; })
_BRACE_WORD = re.compile(r"^[{}](?:\s+|$)")
# env -S / --split-string: its argument is split into a command line
_SPLIT_STRING_FLAGS = ("-S", "--split-string")


class _State(enum.Enum):
    NORMAL = "normal"
    IN_SINGLE = "in_single"
    IN_DOUBLE = "in_double"


class _Nesting:
    """Quote state plus the stack of open $(...), (...) and `...` groups.

    Each frame saves the state to restore and the character that closes it,
    so quotes inside a substitution nest the way the shell reads them.
    """

    def __init__(self) -> None:
        self.state = _State.NORMAL
        self.frames: list[tuple[_State, str]] = []

    @property
    def top_level(self) -> bool:
        return self.state is _State.NORMAL and not self.frames

    def feed(self, char: str, previous: str) -> None:
        """Advance past one unescaped character; previous is the chunk before it."""
        state = self.state
        if char == "'" and state is not _State.IN_DOUBLE:
            self.state = _State.NORMAL if state is _State.IN_SINGLE else _State.IN_SINGLE
        elif state is _State.IN_SINGLE:
            return
        elif char == '"':
            self.state = _State.NORMAL if state is _State.IN_DOUBLE else _State.IN_DOUBLE
        elif char == "`":
            if self.frames and self.frames[-1][1] == "`":
                self.state = self.frames.pop()[0]
            else:
                self.frames.append((state, "`"))
                self.state = _State.NORMAL
        elif char == "(" and (state is _State.NORMAL or previous == "$"):
            self.frames.append((state, ")"))
            self.state = _State.NORMAL
        elif char == ")" and state is _State.NORMAL and self.frames and self.frames[-1][1] == ")":
            self.state = self.frames.pop()[0]


@dataclass(frozen=True)
class Word:
    """A shell word: its unquoted value and the source text it came from."""

    value: str
    raw: str

    @property
    def quoted(self) -> bool:
        return "'" in self.raw or '"' in self.raw


def split_commands(command: str) -> list[str]:
    """Split a command on chain operators into ordered chain links.

    Splits on &&, ||, ;, single |, newlines, and a lone background &.
    Operators inside quotes, substitutions or ( ... ) subshell groups, or
    escaped with a backslash, are not boundaries. The ``{`` and ``}`` words
    of a brace group are dropped, since the group runs in the current shell.
    """
    links: list[str] = []
    current: list[str] = []
    nesting = _Nesting()

    def flush() -> None:
        text = _strip_braces("".join(current).strip())
        if text:
            links.append(text)
        current.clear()

    i = 0
    n = len(command)
    while i < n:
        char = command[i]
        next_char = command[i + 1] if i + 1 < n else ""

        if char == "\\" and nesting.state is not _State.IN_SINGLE:
            current.append(char + next_char)
            i += 2
            continue

        if nesting.top_level:
            if (char == "&" and next_char == "&") or (char == "|" and next_char == "|"):
                flush()
                i += 2
                continue
            if char in ";\n" or char == "|":
                flush()
                i += 1
                continue
            if char == "&" and _is_background_operator(current, next_char):
                flush()
                i += 1
                continue

        nesting.feed(char, current[-1] if current else "")
        current.append(char)
        i += 1

    flush()
    return links


def _strip_braces(text: str) -> str:
    while True:
        match = _BRACE_WORD.match(text)
        if not match:
            return text
        text = text[match.end() :]


def subshell_group(command: str) -> tuple[str, str] | None:
    """Split a ``( body ) rest`` link into its body and what follows it.

    Returns None unless the link starts with a subshell group that closes.
    The rest is usually empty or a redirect applied to the whole group.
    """
    if not command.startswith("("):
        return None
    nesting = _Nesting()
    previous = ""
    i = 0
    while i < len(command):
        char = command[i]
        if char == "\\" and nesting.state is not _State.IN_SINGLE:
            previous = command[i : i + 2]
            i += 2
            continue
        nesting.feed(char, previous)
        if not nesting.frames:
            return command[1:i].strip(), command[i + 1 :].strip()
        previous = char
        i += 1
    return None


def _is_background_operator(current: list[str], next_char: str) -> bool:
    """A lone & ends a command unless it is part of a redirect (2>&1, &>f)."""
    if next_char == ">":
        return False
    previous = "".join(current).rstrip(" \t")
    if previous != "".join(current):
        return True
    return not previous.endswith((">", "<"))


def tokenize(command: str) -> list[Word]:
    """Split one chain link into words, removing quotes and escapes."""
    words: list[Word] = []
    value: list[str] = []
    raw: list[str] = []
    in_word = False
    state = _State.NORMAL

    i = 0
    n = len(command)
    while i < n:
        char = command[i]
        next_char = command[i + 1] if i + 1 < n else ""

        if state is _State.NORMAL:
            if char.isspace():
                if in_word:
                    words.append(Word("".join(value), "".join(raw)))
                    value.clear()
                    raw.clear()
                    in_word = False
                i += 1
                continue
            in_word = True
            if char == "\\":
                raw.append(char + next_char)
                if next_char != "\n":
                    value.append(next_char)
                i += 2
                continue
            if char == "'":
                state = _State.IN_SINGLE
            elif char == '"':
                state = _State.IN_DOUBLE
            else:
                value.append(char)
            raw.append(char)
            i += 1
            continue

        if state is _State.IN_SINGLE:
            if char == "'":
                state = _State.NORMAL
            else:
                value.append(char)
            raw.append(char)
            i += 1
            continue

        # IN_DOUBLE: backslash only escapes a few characters
        if char == "\\" and next_char in ('"', "\\", "$", "`"):
            value.append(next_char)
            raw.append(char + next_char)
            i += 2
            continue
        if char == '"':
            state = _State.NORMAL
        else:
            value.append(char)
        raw.append(char)
        i += 1

    if in_word:
        words.append(Word("".join(value), "".join(raw)))
    return words


def _skip_wrapper(name: str, words: list[Word], i: int) -> int:
    """Return the index of the command a wrapper runs, starting after the wrapper."""
    options = WRAPPER_OPTIONS_WITH_ARG.get(name, frozenset())
    while i < len(words):
        token = words[i].value
        if token == "--":
            return i + 1
        if token in options:
            i += 2
            continue
        if token.startswith("-") and token != "-":
            i += 1
            continue
        if name == "env" and _ENV_ASSIGNMENT.match(token):
            i += 1
            continue
        if name in NUMERIC_ARG_WRAPPERS and _NUMBER.match(token):
            return i + 1
        break
    return i


def _command_index(words: list[Word]) -> int:
    """Index of the real command word, looking through assignments and wrappers."""
    i = 0
    while i < len(words):
        if _ENV_ASSIGNMENT.match(words[i].raw):
            i += 1
            continue
        name = os.path.basename(words[i].value)
        if name not in WRAPPER_COMMANDS:
            return i
        i = _skip_wrapper(name, words, i + 1)
    return i


def get_base_command(command: str) -> str:
    """Return the basename of the command a chain link actually runs."""
    words = tokenize(command)
    i = _command_index(words)
    if i >= len(words):
        return ""
    return os.path.basename(words[i].value)


def env_split_command(command: str) -> str | None:
    """Return the command line an ``env -S STRING`` link runs, if any.

    env splits STRING into words and runs them with any arguments that
    follow it, so ``env -S 'rm -rf' ~/x`` runs ``rm -rf ~/x``.
    """
    words = tokenize(command)
    i = 0
    while i < len(words):
        if _ENV_ASSIGNMENT.match(words[i].raw):
            i += 1
            continue
        name = os.path.basename(words[i].value)
        if name not in WRAPPER_COMMANDS:
            return None
        if name == "env":
            split = _split_string(words, i + 1)
            if split is not None:
                return split
        i = _skip_wrapper(name, words, i + 1)
    return None


def _split_string(words: list[Word], i: int) -> str | None:
    options = WRAPPER_OPTIONS_WITH_ARG["env"]
    while i < len(words):
        token = words[i].value
        if token in _SPLIT_STRING_FLAGS:
            if i + 1 >= len(words):
                return None
            head, rest = words[i + 1].value, words[i + 2 :]
        elif token.startswith("--split-string="):
            head, rest = token.split("=", 1)[1], words[i + 1 :]
        elif token.startswith("-S"):
            head, rest = token[2:], words[i + 1 :]
        elif token in options:
            i += 2
            continue
        elif (token.startswith("-") and token not in ("-", "--")) or _ENV_ASSIGNMENT.match(token):
            i += 1
            continue
        else:
            return None
        return " ".join([head] + [word.raw for word in rest]).strip()
    return None


def command_arguments(command: str) -> list[Word]:
    """Return the words following the real command word."""
    words = tokenize(command)
    return words[_command_index(words) + 1 :]


def _path_from_word(word: Word) -> str | None:
    if _OPERAND_ASSIGNMENT.match(word.raw):
        return word.value.split("=", 1)[1] or None
    if word.quoted:
        return word.value or None
    if word.value.startswith("-"):
        return None
    return word.value or None


def extract_paths(command: str) -> list[str]:
    """Extract candidate path arguments in positional order.

    Quoted words count verbatim, unquoted flags are skipped, and name=value
    operands contribute only the value (dd of=/tmp/x). Redirect words are
    skipped; redirect targets are validated separately.
    """
    paths: list[str] = []
    args = command_arguments(command)
    skip_next = False
    for word in args:
        if skip_next:
            skip_next = False
            continue
        if not word.quoted:
            match = _REDIRECT_WORD.match(word.raw)
            if match:
                # bare operator: its target is the next word
                skip_next = match.end() == len(word.raw) and not match.group(3)
                continue
        path = _path_from_word(word)
        if path:
            paths.append(path)
    return paths


def find_option_value(command: str, flags: tuple[str, ...]) -> str | None:
    """Return the argument of the first flag in flags (-t DIR or --flag=DIR)."""
    args = command_arguments(command)
    for i, word in enumerate(args):
        for flag in flags:
            if word.value == flag and i + 1 < len(args):
                return args[i + 1].value
            if flag.startswith("--") and word.value.startswith(flag + "="):
                return word.value[len(flag) + 1 :]
    return None


def find_operand(command: str, name: str) -> str | None:
    """Return the value of a name=value operand (dd's of=...)."""
    prefix = name + "="
    for word in command_arguments(command):
        if word.value.startswith(prefix):
            return word.value[len(prefix) :] or None
    return None


def is_cd_command(command: str) -> bool:
    return get_base_command(command) == "cd"


def extract_cd_target(command: str) -> str | None:
    """Return the directory a cd link changes to.

    Bare ``cd`` returns ``~``; ``cd -`` returns ``-``; None when only flags
    were given.
    """
    args = command_arguments(command)
    if not args:
        return "~"
    for word in args:
        if word.value == "-":
            return "-"
        if word.quoted or not word.value.startswith("-"):
            return word.value
    return None


def extract_redirect_targets(command: str) -> list[str]:
    """Return output redirect targets (> and >>) in order of appearance."""
    targets = []
    for match in REDIRECT_PATTERN.finditer(command):
        path = match.group(1) or match.group(2) or match.group(3)
        if not path or path.startswith("&"):
            continue
        targets.append(path)
    return targets


def has_substitution(text: str) -> bool:
    """Check if text contains an unexpanded command or process substitution."""
    return any(marker in text for marker in SUBSTITUTION_MARKERS)


def extract_substitutions(command: str) -> list[str]:
    """Return the inner commands of $(...), `...`, <(...) and >(...).

    Only outermost substitutions are returned; nested ones are found when the
    inner command is analyzed. Uses bashlex, falling back to a character scan
    when bashlex cannot parse the command (heredocs inside $(), etc.).
    """
    if not has_substitution(command):
        return []
    try:
        inner = _bashlex_substitutions(command)
    except Exception:
        return _scan_substitutions(command)
    return inner or _scan_substitutions(command)


def _bashlex_substitutions(command: str) -> list[str]:
    found: list[str] = []
    for tree in bashlex.parse(command):
        _collect_substitutions(tree, command, found)
    return found


def _collect_substitutions(node, source: str, found: list[str]) -> None:
    """Recursively walk a bashlex AST collecting substitution bodies."""
    if node.kind in ("commandsubstitution", "processsubstitution"):
        start, end = node.pos
        text = source[start:end]
        if text.startswith(("$(", "<(", ">(")) and text.endswith(")"):
            body = text[2:-1].strip()
        elif len(text) > 1 and text.startswith("`") and text.endswith("`"):
            body = text[1:-1].strip()
        else:
            raise ValueError(f"substitution position mismatch: {text!r}")
        if body:
            found.append(body)
        return
    for value in vars(node).values():
        if isinstance(value, bashlex.ast.node):
            _collect_substitutions(value, source, found)
        elif isinstance(value, list):
            for child in value:
                if isinstance(child, bashlex.ast.node):
                    _collect_substitutions(child, source, found)


def _scan_substitutions(s: str) -> list[str]:
    """Character scan for substitution bodies, skipping single-quoted text."""
    found: list[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(s):
        char = s[i]
        if char == "\\" and not in_single:
            i += 2
            continue
        if char == "'" and not in_double:
            in_single = not in_single
            i += 1
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            i += 1
            continue
        if in_single:
            i += 1
            continue
        if s[i : i + 2] in ("$(", "<(", ">("):
            # Find matching closing paren, accounting for nesting
            depth = 1
            start = i + 2
            j = start
            while j < len(s) and depth > 0:
                if s[j] == "(":
                    depth += 1
                elif s[j] == ")":
                    depth -= 1
                j += 1
            if depth == 0:
                body = s[start : j - 1].strip()
                if body:
                    found.append(body)
                i = j
            else:
                # Unterminated: treat the rest as the body
                body = s[start:].strip()
                if body:
                    found.append(body)
                break
            continue
        if char == "`":
            # No nesting for backticks
            j = s.find("`", i + 1)
            end = j if j != -1 else len(s)
            body = s[i + 1 : end].strip()
            if body:
                found.append(body)
            if j == -1:
                break
            i = j + 1
            continue
        i += 1
    return found
