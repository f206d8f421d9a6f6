"""
Exclude pattern normalization and ``**``-aware glob matching.

Patterns are matched against slash-separated paths relative to the fileset
source. ``*`` and ``?`` never cross a ``/``; ``**`` as a whole segment
matches zero or more directories, and a trailing ``/**`` also matches the
directory itself so that the directory can be pruned from the walk.
"""

import os
import re
from functools import lru_cache

from ..errors import ErrorKind, HarbormasterError

_OP = "filesets.patterns"


def normalize_exclude_patterns(patterns: list[str] | None) -> list[str]:
    """Trim, slash-normalize, expand directory patterns, dedupe and sort.

    ``"build/"`` becomes ``"build/**"``.
    """
    normalized = set()
    for pattern in patterns or []:
        pattern = pattern.strip().replace(os.sep, "/")
        if not pattern:
            continue
        if pattern.endswith("/"):
            pattern += "**"
        normalized.add(pattern)
    return sorted(normalized)


def _translate_class(segment: str, start: int) -> tuple[str, int]:
    end = start + 1
    if end < len(segment) and segment[end] in "!^":
        end += 1
    if end < len(segment) and segment[end] == "]":
        end += 1
    while end < len(segment) and segment[end] != "]":
        end += 1
    if end >= len(segment):
        raise HarbormasterError(_OP, ErrorKind.INVALID_INPUT, f"unterminated character class in {segment!r}")
    body = segment[start + 1:end]
    negate = body[:1] in ("!", "^")
    if negate:
        body = body[1:]
    body = body.replace("\\", "\\\\")
    if negate:
        return f"[^/{body}]", end + 1
    return f"[{body}]", end + 1


def _split_alternatives(body: str, pattern: str) -> list[str]:
    parts = []
    depth = 0
    current = ""
    for char in body:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        current += char
    if depth != 0:
        raise HarbormasterError(_OP, ErrorKind.INVALID_INPUT, f"unbalanced braces in {pattern!r}")
    parts.append(current)
    return parts


def _translate_segment(segment: str) -> str:
    out = []
    i = 0
    while i < len(segment):
        char = segment[i]
        if char == "*":
            while i < len(segment) and segment[i] == "*":
                i += 1
            out.append("[^/]*")
            continue
        if char == "?":
            out.append("[^/]")
        elif char == "[":
            translated, i = _translate_class(segment, i)
            out.append(translated)
            continue
        elif char == "{":
            depth = 0
            end = i
            while end < len(segment):
                if segment[end] == "{":
                    depth += 1
                elif segment[end] == "}":
                    depth -= 1
                    if depth == 0:
                        break
                end += 1
            if end >= len(segment):
                raise HarbormasterError(_OP, ErrorKind.INVALID_INPUT, f"unterminated '{{' in {segment!r}")
            alternatives = _split_alternatives(segment[i + 1:end], segment)
            out.append("(?:" + "|".join(_translate_segment(a) for a in alternatives) + ")")
            i = end + 1
            continue
        elif char == "\\":
            i += 1
            if i >= len(segment):
                raise HarbormasterError(_OP, ErrorKind.INVALID_INPUT, f"trailing escape in {segment!r}")
            out.append(re.escape(segment[i]))
        else:
            out.append(re.escape(char))
        i += 1
    return "".join(out)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile one normalized glob into an anchored regex.

    Raises:
        HarbormasterError: invalid_input for malformed patterns
    """
    segments = []
    for segment in pattern.split("/"):
        # Adjacent globstars match the same paths as one.
        if segment == "**" and segments and segments[-1] == "**":
            continue
        segments.append(segment)
    last = len(segments) - 1
    regex = ""
    leading_globstar = False
    for index, segment in enumerate(segments):
        if segment == "**":
            if index == 0 and index == last:
                regex += ".*"
            elif index == 0:
                regex += "(?:[^/]+/)*"
                leading_globstar = True
            elif index == last:
                regex += "(?:/.*)?"
            else:
                regex += "(?:/[^/]+)*"
            continue
        if index > 0 and not (index == 1 and leading_globstar):
            regex += "/"
        regex += _translate_segment(segment)
    try:
        return re.compile(f"^{regex}$")
    except re.error as e:
        raise HarbormasterError(_OP, ErrorKind.INVALID_INPUT, f"bad glob {pattern!r}: {e}", cause=e) from e


class ExcludeMatcher:
    """Matches relative slash paths against a normalized pattern list."""

    def __init__(self, patterns: list[str] | None):
        self.patterns = normalize_exclude_patterns(patterns)
        self._compiled = [compile_pattern(p) for p in self.patterns]

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def matches(self, rel_path: str) -> bool:
        return any(regex.match(rel_path) for regex in self._compiled)
