"""
Git binary version detection and the LFS / credential-helper adjustments that depend on it.
"""

from __future__ import annotations

import re
import subprocess

import structlog

from forgecfg.config.errors import ConfigError
from forgecfg.config.schemas import Settings

logger = structlog.get_logger(__name__)

LFS_MIN_GIT_VERSION = "2.1.2"
CREDENTIAL_HELPER_MIN_GIT_VERSION = "2.9"
LFS_FILTER_ARGS = [
    "-c", "filter.lfs.required=",
    "-c", "filter.lfs.smudge=",
    "-c", "filter.lfs.clean=",
]
CREDENTIAL_HELPER_ARGS = ["-c", "credential.helper="]

_VERSION_RE = re.compile(r"(\d+(?:\.\d+)*)")


def binary_version(binary: str = "git") -> str:
    """Return the version of the git binary, e.g. "2.39.2".

    Raises:
        ConfigError: git cannot be executed or its output is not understood.
    """
    try:
        out = subprocess.run(
            [binary, "--version"],
            capture_output=True,
            text=True,
            check=True,
            timeout=10,
        ).stdout
    except (OSError, subprocess.SubprocessError) as e:
        raise ConfigError(f"Error retrieving git version: {e}") from e
    m = re.search(r"git version\s+(\d+(?:\.\d+)*)", out)
    if not m:
        raise ConfigError(f"Error retrieving git version: unexpected output {out.strip()!r}")
    return m.group(1)


def _parts(version: str) -> tuple[int, ...]:
    m = _VERSION_RE.search(version)
    if not m:
        raise ValueError(f"not a version: {version!r}")
    return tuple(int(p) for p in m.group(1).split("."))


def version_at_least(version: str, minimum: str) -> bool:
    """Compare dotted numeric versions; missing components count as 0."""
    have, want = _parts(version), _parts(minimum)
    width = max(len(have), len(want))
    have += (0,) * (width - len(have))
    want += (0,) * (width - len(want))
    return have >= want


def check_lfs_version(settings: Settings, git_version: str | None = None) -> Settings:
    """Disable the LFS server when git is too old, else turn off git's own LFS filters."""
    if not settings.lfs.start_server:
        return settings
    version = git_version or settings.git.version or binary_version()
    if not version_at_least(version, LFS_MIN_GIT_VERSION):
        logger.error("lfs_git_too_old", git_version=version, required=LFS_MIN_GIT_VERSION)
        return settings.model_copy(
            update={"lfs": settings.lfs.model_copy(update={"start_server": False})}
        )
    git = settings.git.model_copy(
        update={"global_command_args": [*settings.git.global_command_args, *LFS_FILTER_ARGS]}
    )
    return settings.model_copy(update={"git": git})
