"""Exclusion patterns for the reverse view, with gitignore-style matching."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

__all__ = [
    "ExcludeError",
    "GitIgnore",
    "get_exclusion_patterns",
    "prepare_excluder",
]

log = logging.getLogger(__name__)

_MAGIC_STAR = "#$~"
_FOLDER_GLOB = re.compile(r"([^/+])/.*\*\.")


class ExcludeError(Exception):
    """Exclusion patterns could not be read."""


def _compile_line(line: str) -> tuple[re.Pattern[str], bool] | None:
    line = line.rstrip("\r")
    if line.startswith("#"):
        return None
    line = line.strip(" ")
    if not line:
        return None

    negate = False
    if line[0] == "!":
        negate = True
        line = line[1:]
    # An escaped leading "#" or "!".
    if line[:1] in ("#", "!"):
        line = line[1:]

    # "foo/*.blah" is anchored to the top directory.
    if _FOLDER_GLOB.search(line) and line[:1] != "/":
        line = "/" + line

    line = line.replace(".", r"\.")
    if line.startswith("/**/"):
        line = line[1:]
    line = line.replace("/**/", "(/|/.+/)")
    line = line.replace("**/", "(|." + _MAGIC_STAR + "/)")
    line = line.replace("/**", "(|/." + _MAGIC_STAR + ")")
    line = line.replace(r"\*", "\\" + _MAGIC_STAR)
    line = line.replace("*", "([^/]*)")
    line = line.replace("?", r"\?")
    line = line.replace(_MAGIC_STAR, "*")

    expr = line + ("(|.*)" if line.endswith("/") else "(|/.*)") + r"\Z"
    if expr.startswith("/"):
        expr = "^(|/)" + expr[1:]
    else:
        expr = "^(|.*/)" + expr
    try:
        return re.compile(expr, re.DOTALL), negate
    except re.error as exc:
        log.warning("ignoring invalid exclusion pattern %r: %s", line, exc)
        return None


class GitIgnore:
    """A compiled list of gitignore-style patterns.

    Later patterns take precedence; a leading "!" negates a pattern.
    """

    def __init__(self, lines: Iterable[str]) -> None:
        self._patterns = [p for p in map(_compile_line, lines) if p is not None]

    def matches_path(self, path: str) -> bool:
        """True if ``path`` (relative, "/"-separated) is excluded."""
        matched = False
        for pattern, negate in self._patterns:
            if pattern.search(path):
                if not negate:
                    matched = True
                elif matched:
                    matched = False
        return matched


def _get_lines(path: str) -> list[str]:
    with open(path, "rb") as f:
        data = f.read()
    return data.decode("utf-8", "surrogateescape").split("\n")


def get_exclusion_patterns(
    exclude: Sequence[str] = (),
    exclude_wildcard: Sequence[str] = (),
    exclude_from: Sequence[str] = (),
) -> list[str]:
    """Collect all exclusion patterns.

    Plain ``exclude`` entries are prefixed with "/" so they match against
    the full path; wildcard patterns are used as given; each file in
    ``exclude_from`` contributes its lines. Raises ExcludeError if a file
    cannot be read.
    """
    patterns = ["/" + p for p in exclude]
    patterns.extend(exclude_wildcard)
    for path in exclude_from:
        try:
            patterns.extend(_get_lines(path))
        except OSError as exc:
            raise ExcludeError(f"Error reading exclusion patterns: {exc}") from exc
    return patterns


def prepare_excluder(
    exclude: Sequence[str] = (),
    exclude_wildcard: Sequence[str] = (),
    exclude_from: Sequence[str] = (),
) -> GitIgnore:
    """Compile the exclusion patterns into a matcher.

    Raises ValueError if there are no patterns at all.
    """
    patterns = get_exclusion_patterns(exclude, exclude_wildcard, exclude_from)
    if not patterns:
        raise ValueError("prepare_excluder called without any exclusion patterns")
    return GitIgnore(patterns)