"""Brace-aware glob matching relative to a project root."""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path, PurePosixPath

_MAGIC_CHARS = frozenset("*?[{")


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives: ``src/*.{html,css}`` -> two patterns."""

    start = pattern.find("{")
    if start < 0:
        return [pattern]
    depth = 0
    for index in range(start, len(pattern)):
        char = pattern[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                end = index
                break
    else:
        return [pattern]

    head, body, tail = pattern[:start], pattern[start + 1 : end], pattern[end + 1 :]
    expanded: list[str] = []
    for option in _split_top_level(body):
        for rest in expand_braces(option + tail):
            candidate = head + rest
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


def _split_top_level(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in body:
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        current.append(char)
    parts.append("".join(current))
    return parts


def glob_base(pattern: str) -> PurePosixPath:
    """Leading directory of ``pattern`` that contains no wildcard."""

    parts = PurePosixPath(pattern).parts
    base: list[str] = []
    for part in parts[:-1]:
        if _MAGIC_CHARS.intersection(part):
            break
        base.append(part)
    return PurePosixPath(*base) if base else PurePosixPath(".")


def is_recursive(pattern: str) -> bool:
    """Whether matches may live below the glob base directory."""

    base = glob_base(pattern)
    base_depth = 0 if base == PurePosixPath(".") else len(base.parts)
    return "**" in pattern or len(PurePosixPath(pattern).parts) - base_depth > 1


def iter_matches(pattern: str, root: Path) -> list[Path]:
    """Files under ``root`` matching ``pattern``, sorted and de-duplicated."""

    found: dict[Path, None] = {}
    for expanded in expand_braces(pattern):
        for path in sorted(root.glob(expanded)):
            if path.is_file():
                found.setdefault(path, None)
    return sorted(found)


def matches(pattern: str, path: Path, root: Path) -> bool:
    """Whether ``path`` (absolute or root-relative) matches ``pattern``."""

    try:
        relative = path.resolve().relative_to(root.resolve()) if path.is_absolute() else path
    except ValueError:
        return False
    candidate = relative.as_posix()
    return any(_compile(expanded).fullmatch(candidate) for expanded in expand_braces(pattern))


def destination(
    source: Path,
    *,
    pattern: str,
    root: Path,
    output_dir: Path,
    suffix: str | None = None,
) -> Path:
    """Output path for ``source``, keeping its layout below the glob base."""

    base = root / glob_base(pattern)
    relative = source.relative_to(base)
    if suffix is not None:
        relative = relative.with_suffix(suffix)
    return output_dir / relative


@lru_cache(maxsize=128)
def _compile(pattern: str) -> re.Pattern[str]:
    pattern = pattern.removeprefix("./")
    out: list[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if pattern.startswith("**/", index):
            out.append("(?:.*/)?")
            index += 3
            continue
        if pattern.startswith("**", index):
            out.append(".*")
            index += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            close = pattern.find("]", index + 1)
            if close < 0:
                out.append(re.escape(char))
            else:
                body = pattern[index + 1 : close]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                index = close
        else:
            out.append(re.escape(char))
        index += 1
    return re.compile("".join(out))
