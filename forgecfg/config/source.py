"""
Layered INI source: sections, case-insensitive keys, typed "must" getters, in-place key updates.

- Files are merged in order; a later file overrides earlier ones per section/key.
- Keys before the first section header belong to the root section "".
- Getters never raise: a missing or unparsable value yields the supplied default.
"""

from __future__ import annotations

import configparser
import re
from datetime import timedelta
from pathlib import Path
from typing import Iterable

from forgecfg.config.fields import parse_duration, split_list

ROOT_SECTION = ""
_ROOT_HEADER = "__root__"
_TRUE = {"1", "t", "true", "y", "yes", "on"}
_FALSE = {"0", "f", "false", "n", "no", "off"}


def _unquote(value: str) -> str:
    v = value.strip()
    if len(v) >= 6 and v.startswith('"""') and v.endswith('"""'):
        return v[3:-3]
    if len(v) >= 2 and v[0] == v[-1] and v[0] in ('"', "`"):
        return v[1:-1]
    return v


def parse_bool(value: str) -> bool:
    """Parse INI boolean text. Raises ValueError when not a recognised spelling."""
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r}")


class Section:
    """View over one section's keys."""

    def __init__(self, name: str, entries: dict[str, tuple[str, str]] | None = None):
        self.name = name
        # upper-case key -> (original key, value)
        self._entries: dict[str, tuple[str, str]] = entries if entries is not None else {}

    def __repr__(self) -> str:
        return f"Section({self.name!r}, keys={len(self._entries)})"

    def has_key(self, key: str) -> bool:
        return key.upper() in self._entries

    def raw(self, key: str) -> str | None:
        """Value as written (unquoted), or None when the key is absent."""
        entry = self._entries.get(key.upper())
        return entry[1] if entry is not None else None

    def get_str(self, key: str, default: str = "") -> str:
        value = self.raw(key)
        return default if value is None or value == "" else value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.raw(key)
        if value is None or value == "":
            return default
        try:
            return parse_bool(value)
        except ValueError:
            return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.raw(key)
        if value is None:
            return default
        try:
            return int(value.strip())
        except ValueError:
            return default

    def get_duration(self, key: str, default: timedelta) -> timedelta:
        value = self.raw(key)
        if value is None:
            return default
        try:
            return parse_duration(value)
        except ValueError:
            return default

    def get_list(self, key: str, sep: str = ",") -> list[str]:
        value = self.raw(key)
        if not value:
            return []
        return split_list(value, sep)

    def get_choice(self, key: str, default: str, choices: Iterable[str]) -> str:
        """Value when it is one of choices, otherwise default."""
        value = self.raw(key)
        if value is not None and value in set(choices):
            return value
        return default

    def keys(self) -> list[str]:
        """Original key spellings, in file order."""
        return [orig for orig, _ in self._entries.values()]

    def keys_hash(self) -> dict[str, str]:
        return {orig: value for orig, value in self._entries.values()}

    def to_dict(self) -> dict[str, str]:
        """Upper-case key -> value, ready for pydantic alias validation.

        Empty values are left out so the model default applies.
        """
        return {k: v for k, (_, v) in self._entries.items() if v != ""}


class ConfigSource:
    """Ordered, mergeable INI store."""

    def __init__(self) -> None:
        # lower-case section name -> (original name, entries)
        self._sections: dict[str, tuple[str, dict[str, tuple[str, str]]]] = {
            ROOT_SECTION: (ROOT_SECTION, {}),
        }
        self.files: list[Path] = []

    @classmethod
    def from_file(cls, path: str | Path) -> "ConfigSource":
        source = cls()
        source.append(path)
        return source

    def append(self, path: str | Path) -> None:
        """Merge an INI file on top of what is already loaded.

        Raises:
            OSError: file cannot be read.
            UnicodeDecodeError: file is not UTF-8.
            configparser.Error: file is not valid INI.
        """
        p = Path(path)
        text = p.read_text(encoding="utf-8")
        self.read_string(text, source=str(p))
        self.files.append(p)

    def read_string(self, text: str, source: str = "<string>") -> None:
        parser = configparser.ConfigParser(
            interpolation=None,
            strict=False,
            allow_no_value=True,
            default_section="__forgecfg_defaults__",
            comment_prefixes=("#", ";"),
            empty_lines_in_values=False,
        )
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        parser.read_string(f"[{_ROOT_HEADER}]\n{text}", source=source)
        for sec_name in parser.sections():
            name = ROOT_SECTION if sec_name == _ROOT_HEADER else sec_name
            for key, value in parser.items(sec_name, raw=True):
                self.set_value(name, key, _unquote(value or ""))

    def _entries(self, name: str, create: bool = False) -> dict[str, tuple[str, str]] | None:
        found = self._sections.get(name.lower())
        if found is None:
            if not create:
                return None
            found = (name, {})
            self._sections[name.lower()] = found
        return found[1]

    def has_section(self, name: str) -> bool:
        return name.lower() in self._sections

    def section(self, name: str) -> Section:
        """Section view; a missing section behaves as empty."""
        entries = self._entries(name)
        if entries is None:
            return Section(name)
        return Section(self._sections[name.lower()][0], entries)

    def section_names(self) -> list[str]:
        return [orig for orig, _ in self._sections.values()]

    def child_sections(self, prefix: str) -> list[Section]:
        """Sections named "<prefix>.<child>", in load order."""
        lead = prefix.lower() + "."
        return [
            Section(orig, entries)
            for low, (orig, entries) in self._sections.items()
            if low.startswith(lead)
        ]

    def set_value(self, section: str, key: str, value: str) -> None:
        entries = self._entries(section, create=True)
        assert entries is not None
        up = key.upper()
        orig = entries[up][0] if up in entries else key
        entries[up] = (orig, value)


_HEADER_LINE = re.compile(r"^\s*\[(?P<name>[^\]]+)\]\s*(?:[#;].*)?$")
_KEY_LINE = re.compile(r"^(?P<key>[^\s=:#;\[][^=:]*?)\s*[=:]")


def set_key_in_text(text: str, section: str, key: str, value: str) -> str:
    """Set section.key = value in INI text, leaving every other line untouched.

    Comments, quoting and ordering survive. An existing key (case-insensitive,
    last occurrence wins like on load) is rewritten in place together with its
    continuation lines; otherwise the key is appended to the last block of the
    section, or a new section is added at the end.
    """
    lines = text.splitlines()
    owner: list[str] = []
    current = ROOT_SECTION
    for line in lines:
        m = _HEADER_LINE.match(line)
        if m:
            current = m.group("name").strip().lower()
        owner.append(current)

    target = section.lower()
    new_line = f"{key} = {value}"
    found = None
    for i, line in enumerate(lines):
        m = _KEY_LINE.match(line)
        if m and owner[i] == target and m.group("key").upper() == key.upper():
            found = i
    if found is not None:
        end = found + 1
        while end < len(lines) and lines[end][:1].isspace() and lines[end].strip():
            end += 1
        orig_key = _KEY_LINE.match(lines[found]).group("key")
        lines[found:end] = [f"{orig_key} = {value}"]
    else:
        block = [i for i, name in enumerate(owner) if name == target]
        if target == ROOT_SECTION:
            insert_at = 0
            for i in block:
                if lines[i].strip():
                    insert_at = i + 1
            lines.insert(insert_at, new_line)
        elif block:
            last_block_start = block[-1]
            while last_block_start - 1 in block:
                last_block_start -= 1
            insert_at = last_block_start + 1
            for i in range(last_block_start, block[-1] + 1):
                if lines[i].strip() and not lines[i].lstrip().startswith(("#", ";")):
                    insert_at = i + 1
            lines.insert(insert_at, new_line)
        else:
            if lines and lines[-1].strip():
                lines.append("")
            lines.extend([f"[{section}]", new_line])
    return "\n".join(lines) + "\n"
