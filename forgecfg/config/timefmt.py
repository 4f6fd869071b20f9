"""Named time layouts and validation of custom strftime patterns.

Patterns are strftime patterns with one extension: ``%:z`` renders the UTC
offset the RFC 3339 way, ``Z`` for UTC and ``+hh:mm`` otherwise. Format with
``format_time`` rather than ``datetime.strftime`` so the extension is honored.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from forgecfg.config.errors import ConfigError

RFC3339 = "%Y-%m-%dT%H:%M:%S%:z"

NAMED_FORMATS: dict[str, str] = {
    "ANSIC": "%a %b %d %H:%M:%S %Y",
    "UnixDate": "%a %b %d %H:%M:%S %Z %Y",
    "RubyDate": "%a %b %d %H:%M:%S %z %Y",
    "RFC822": "%d %b %y %H:%M %Z",
    "RFC822Z": "%d %b %y %H:%M %z",
    "RFC850": "%A, %d-%b-%y %H:%M:%S %Z",
    "RFC1123": "%a, %d %b %Y %H:%M:%S %Z",
    "RFC1123Z": "%a, %d %b %Y %H:%M:%S %z",
    "RFC3339": RFC3339,
    "RFC3339Nano": "%Y-%m-%dT%H:%M:%S.%f%:z",
    "Kitchen": "%I:%M%p",
    "Stamp": "%b %d %H:%M:%S",
    "StampMilli": "%b %d %H:%M:%S.%f",
    "StampMicro": "%b %d %H:%M:%S.%f",
    "StampNano": "%b %d %H:%M:%S.%f",
}

REFERENCE_TIME = datetime(2006, 1, 2, 15, 4, 5, tzinfo=timezone.utc)
REFERENCE_TEXT = "2006-01-02T15:04:05Z"

# "%%" is matched too so an escaped percent followed by ":z" stays literal.
_DIRECTIVE = re.compile(r"%(%|:z)")


def _colon_offset(value: datetime) -> str:
    offset = value.utcoffset()
    if offset is None:
        return ""
    if not offset:
        return "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(offset) // timedelta(minutes=1)
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def format_time(value: datetime, pattern: str) -> str:
    """strftime with ``%:z`` expanded to an RFC 3339 offset."""

    def _expand(match: re.Match) -> str:
        if match.group(1) == "%":
            return "%%"
        return _colon_offset(value)

    return value.strftime(_DIRECTIVE.sub(_expand, pattern))


def parse_time(text: str, pattern: str) -> datetime:
    """strptime counterpart of ``format_time``; ``%z`` already accepts ``Z`` and ``+hh:mm``."""
    strptime_pattern = _DIRECTIVE.sub(lambda m: "%%" if m.group(1) == "%" else "%z", pattern)
    return datetime.strptime(text, strptime_pattern)


def round_trips(pattern: str) -> bool:
    """True when pattern formats and parses back the reference instant unchanged."""
    try:
        parsed = parse_time(format_time(REFERENCE_TIME, pattern), pattern)
    except ValueError:
        return False
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ") == REFERENCE_TEXT


def resolve_time_format(name: str) -> str:
    """Map a layout name to its pattern; any other value must be a round-tripping pattern.

    Raises:
        ConfigError: the custom pattern loses part of the date or time.
    """
    pattern = NAMED_FORMATS.get(name)
    if pattern is not None:
        return pattern
    if not round_trips(name):
        raise ConfigError(
            "Can't create time properly, please check your time format has "
            "%Y, %m, %d, %H, %M and %S",
            section="time",
            key="FORMAT",
        )
    return name
