"""
Affected-path discovery.

Best-effort heuristic over free-form shell text, not a security boundary.
Over-inclusive: paths that end up untouched are still snapshotted.
"""

from __future__ import annotations

import glob
import os
import re
import shlex
from dataclasses import dataclass
from typing import Iterator

# Every operand of these is treated as a path, path-like or not.
MUTATING_COMMANDS = frozenset({
    "chgrp", "chmod", "chown", "cp", "dd", "install", "ln", "mkdir", "mv",
    "rm", "rmdir", "rsync", "sed", "shred", "tee", "touch", "truncate", "unlink",
})

# Prefixes that run another command.
_WRAPPERS = frozenset({"sudo", "env", "nice", "nohup", "time", "command", "exec", "xargs"})

_SHELL_PUNCTUATION = set("();<>|&")
_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_RECURSIVE_FLAG = re.compile(r"^(?:-[A-Za-z]*[rR][A-Za-z]*|--recursive)$")
_NUMERIC = re.compile(r"^[\d.]+$")
_GLOB_CHARS = set("*?[")


@dataclass(frozen=True, slots=True)
class PathCandidate:
    """An absolute path the command may touch."""

    path: str
    recursive: bool = False
    """Descendants must be enumerated too (target of a recursive delete)."""


def extract_candidates(command: str, cwd: str) -> list[PathCandidate]:
    """
    Find the paths a command plausibly affects.

    Args:
        command: Raw command text.
        cwd: Directory relative paths are resolved against.

    Returns:
        Candidates in discovery order, de-duplicated. A path seen both as a
        plain and a recursive target is reported once, as recursive.
    """
    found: dict[str, PathCandidate] = {}
    for segment in _segments(_tokenize(command)):
        for token, recursive in _scan_segment(segment):
            for path in _resolve(token, cwd):
                previous = found.get(path)
                if previous is None or (recursive and not previous.recursive):
                    found[path] = PathCandidate(path, recursive)
    return list(found.values())


def looks_like_path(token: str) -> bool:
    """Absolute, relative, home-relative or dotted, and not a URL or number."""
    if not token or "://" in token or _NUMERIC.match(token):
        return False
    return token.startswith(("/", "./", "../", "~")) or "/" in token or "." in token


def _tokenize(command: str) -> list[str]:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        return list(lexer)
    except ValueError:
        # Unbalanced quotes
        return command.split()


def _is_operator(token: str) -> bool:
    return bool(token) and all(ch in _SHELL_PUNCTUATION for ch in token)


def _is_redirect(token: str) -> bool:
    return "<" in token or ">" in token


def _segments(tokens: list[str]) -> Iterator[list[str]]:
    """Split on separators (``;``, ``&&``, ``|``, ...), keeping redirects."""
    current: list[str] = []
    for token in tokens:
        if _is_operator(token) and not _is_redirect(token):
            if current:
                yield current
            current = []
        else:
            current.append(token)
    if current:
        yield current


def _scan_segment(tokens: list[str]) -> Iterator[tuple[str, bool]]:
    program: str | None = None
    recursive = False
    pending_redirect = False
    operands: list[str] = []

    for token in tokens:
        if _is_operator(token):
            # `>&2` duplicates a descriptor, it names no file
            pending_redirect = not token.endswith("&")
            continue
        if pending_redirect:
            pending_redirect = False
            yield token, False
            continue
        if program is None:
            if _ASSIGNMENT.match(token) or token in _WRAPPERS or token.startswith("-"):
                continue
            program = os.path.basename(token)
            continue
        if token == "--":
            continue
        if token.startswith("-") and len(token) > 1:
            if program == "rm" and _RECURSIVE_FLAG.match(token):
                recursive = True
            elif "=" in token and looks_like_path(token.split("=", 1)[1]):
                operands.append(token.split("=", 1)[1])
            continue
        operands.append(token)

    mutating = program in MUTATING_COMMANDS
    for operand in operands:
        if _ASSIGNMENT.match(operand):
            # dd-style key=value
            operand = operand.split("=", 1)[1]
            if not looks_like_path(operand):
                continue
        elif not (mutating or looks_like_path(operand)):
            continue
        yield operand, program == "rm" and recursive


def _resolve(token: str, cwd: str) -> list[str]:
    expanded = os.path.expandvars(os.path.expanduser(token))
    if "$" in expanded or not expanded:
        return []
    if not os.path.isabs(expanded):
        expanded = os.path.join(cwd, expanded)
    path = os.path.normpath(expanded)
    if _GLOB_CHARS & set(token):
        return sorted(glob.glob(path))
    return [path]
