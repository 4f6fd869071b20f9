"""
Annotated field types that turn INI text into typed values.

- Duration: Go-style duration text ("1h30m", "10m", "500ms"); bare numbers are seconds.
- CommaList / SpaceList / PipeList: delimited strings, trimmed, empty items dropped.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Annotated, Any, Callable

from pydantic import BeforeValidator, PlainSerializer

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> timedelta:
    """Parse "72h3m0.5s" style durations. Raises ValueError on malformed input."""
    s = text.strip()
    if not s:
        raise ValueError("empty duration")
    sign = 1
    if s[0] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    if re.fullmatch(r"\d+", s):
        return timedelta(seconds=sign * int(s))
    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            raise ValueError(f"invalid duration {text!r}")
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos != len(s) or pos == 0:
        raise ValueError(f"invalid duration {text!r}")
    return timedelta(seconds=sign * total)


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way it would be written in app.ini (e.g. "8h0m0s")."""
    total = value.total_seconds()
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(int(total), 3600)
    minutes, seconds = divmod(rest, 60)
    frac = total - int(total)
    sec = f"{seconds + frac:g}" if frac else str(seconds)
    if hours:
        return f"{sign}{hours}h{minutes}m{sec}s"
    if minutes:
        return f"{sign}{minutes}m{sec}s"
    return f"{sign}{sec}s"


def _to_duration(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    return value


def split_list(value: str, sep: str) -> list[str]:
    """Split on sep, trim each item, drop empties."""
    if sep == " ":
        return value.split()
    return [part.strip() for part in value.split(sep) if part.strip()]


def _splitter(sep: str) -> Callable[[Any], Any]:
    def _split(value: Any) -> Any:
        if isinstance(value, str):
            return split_list(value, sep)
        return value

    return _split


Duration = Annotated[
    timedelta,
    BeforeValidator(_to_duration),
    PlainSerializer(format_duration, return_type=str, when_used="json"),
]
CommaList = Annotated[list[str], BeforeValidator(_splitter(","))]
SpaceList = Annotated[list[str], BeforeValidator(_splitter(" "))]
PipeList = Annotated[list[str], BeforeValidator(_splitter("|"))]
