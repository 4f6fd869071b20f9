"""Pytest fixtures: isolated work/custom/home directories, app.ini writer, cache reset."""

from pathlib import Path

import pytest
import structlog

from forgecfg.config.loader import load_core, reset_settings_cache

# Any git >= 2.9 so no test depends on the git binary being installed
GIT_VERSION = "2.20.1"


@pytest.fixture
def work_dir(tmp_path, monkeypatch) -> Path:
    """
    Work path under tmp_path with FORGE_WORK_DIR pointing at it.
    HOME and the OS user are faked so SSH / repository paths stay inside tmp_path.
    """
    work = tmp_path / "work"
    home = tmp_path / "home"
    work.mkdir()
    home.mkdir()
    monkeypatch.setenv("FORGE_WORK_DIR", str(work))
    monkeypatch.delenv("FORGE_CUSTOM", raising=False)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("LOGNAME", "git")
    monkeypatch.setenv("USER", "git")
    return work


@pytest.fixture
def custom_conf(work_dir) -> Path:
    return work_dir / "custom" / "conf" / "app.ini"


@pytest.fixture
def write_ini(custom_conf):
    """Write app.ini text to the default custom config path and return the path."""

    def _write(text: str) -> Path:
        custom_conf.parent.mkdir(parents=True, exist_ok=True)
        custom_conf.write_text(text.lstrip(), encoding="utf-8")
        return custom_conf

    return _write


@pytest.fixture
def load(work_dir):
    """load_core with a fixed git version."""

    def _load(**kwargs):
        kwargs.setdefault("git_version", GIT_VERSION)
        return load_core(**kwargs)

    return _load


@pytest.fixture(autouse=True)
def _reset_state():
    reset_settings_cache()
    yield
    reset_settings_cache()
    structlog.reset_defaults()
