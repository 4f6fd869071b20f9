"""Secret generation and write-back of generated secrets into the custom config file."""

from __future__ import annotations

import base64
import binascii
import configparser
import secrets
from pathlib import Path

import structlog

from forgecfg.config.errors import ConfigError
from forgecfg.config.source import ConfigSource, set_key_in_text

logger = structlog.get_logger(__name__)

LFS_JWT_SECRET_BYTES = 32


def new_lfs_jwt_secret() -> str:
    """32 random bytes, base64url without padding."""
    raw = secrets.token_bytes(LFS_JWT_SECRET_BYTES)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_lfs_jwt_secret(text: str) -> bytes | None:
    """Decode a stored secret; None when malformed or not exactly 32 bytes."""
    if not text:
        return None
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != LFS_JWT_SECRET_BYTES:
        return None
    return raw


def new_internal_token() -> str:
    """Random token shared by the web process and internal hook callers."""
    return secrets.token_urlsafe(64)


def persist_secret(custom_conf: str | Path, section: str, key: str, value: str) -> None:
    """Write section.key = value into the custom config, keeping the rest of the file as written.

    Comments, quoting and key order are preserved. A file that cannot be read
    back is logged and replaced by one holding only the new key.
    Read-modify-write without locking: call once per process, at startup.

    Raises:
        ConfigError: the directory or the file cannot be written.
    """
    path = Path(custom_conf)
    text = ""
    if path.is_file():
        try:
            text = path.read_text(encoding="utf-8")
            ConfigSource().read_string(text, source=str(path))
        except (OSError, UnicodeDecodeError, configparser.Error) as e:
            logger.error("custom_config_reload_failed", path=str(path), error=str(e))
            text = ""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Failed to create '{path.parent}': {e}") from e
    try:
        path.write_text(set_key_in_text(text, section, key, value), encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Error saving generated {section}.{key} to custom config: {e}") from e
    logger.info("generated_secret_saved", path=str(path), section=section, key=key)
