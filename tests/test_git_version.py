"""Tests for git version detection and the LFS version check."""

import subprocess

import pytest
from structlog.testing import capture_logs

from forgecfg.config import git
from forgecfg.config.errors import ConfigError
from forgecfg.config.git import (
    CREDENTIAL_HELPER_ARGS,
    LFS_FILTER_ARGS,
    binary_version,
    check_lfs_version,
    version_at_least,
)
from forgecfg.config.schemas import GitSettings, LFSSettings, Settings


@pytest.mark.parametrize(
    "version, minimum, expected",
    [
        ("2.1.2", "2.1.2", True),
        ("2.1.1", "2.1.2", False),
        ("2.10", "2.9", True),
        ("2.9", "2.9.0", True),
        ("1.9.5", "2.1.2", False),
        ("2.39.2.windows.1", "2.9", True),
    ],
)
def test_version_at_least(version, minimum, expected):
    assert version_at_least(version, minimum) is expected


def test_binary_version_parses_output(monkeypatch):
    def _run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout="git version 2.39.2\n", stderr="")

    monkeypatch.setattr(git.subprocess, "run", _run)
    assert binary_version() == "2.39.2"


def test_binary_version_missing_binary():
    with pytest.raises(ConfigError, match="Error retrieving git version"):
        binary_version("definitely-not-a-git-binary")


def test_binary_version_unexpected_output(monkeypatch):
    def _run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout="hello\n", stderr="")

    monkeypatch.setattr(git.subprocess, "run", _run)
    with pytest.raises(ConfigError):
        binary_version()


def _lfs_settings(version: str) -> Settings:
    return Settings(
        lfs=LFSSettings(start_server=True),
        git=GitSettings(version=version, global_command_args=list(CREDENTIAL_HELPER_ARGS)),
    )


def test_lfs_disabled_on_old_git():
    with capture_logs() as logs:
        out = check_lfs_version(_lfs_settings("2.0.0"))
    assert out.lfs.start_server is False
    assert out.git.global_command_args == CREDENTIAL_HELPER_ARGS
    assert any(e["event"] == "lfs_git_too_old" and e["log_level"] == "error" for e in logs)


def test_lfs_filters_disabled_on_new_git():
    out = check_lfs_version(_lfs_settings("2.20.1"))
    assert out.lfs.start_server is True
    assert out.git.global_command_args == CREDENTIAL_HELPER_ARGS + LFS_FILTER_ARGS


def test_lfs_check_noop_when_lfs_off():
    settings = Settings()
    assert check_lfs_version(settings) is settings


def test_lfs_check_explicit_version_wins():
    out = check_lfs_version(_lfs_settings("2.20.1"), git_version="1.8.0")
    assert out.lfs.start_server is False
