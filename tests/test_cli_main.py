"""Tests for the main CLI entry point (forgecfg = forgecfg.cli:main)."""

import json
import subprocess
import sys

import pytest
import yaml

from forgecfg import __version__
from forgecfg.cli import SECRET_MASK, main
from forgecfg.config import loader


@pytest.fixture
def fake_git(monkeypatch):
    monkeypatch.setattr(loader, "binary_version", lambda binary="git": "2.20.1")


def test_main_version_exits_zero_and_prints_version(capsys):
    """Main entry with 'version' subcommand exits 0 and prints version."""
    assert main(["version"]) == 0
    out, _ = capsys.readouterr()
    assert out.strip() == __version__


def test_main_help_exits_zero_and_lists_commands(capsys):
    """--help exits 0 (via SystemExit) and lists the subcommands."""
    with pytest.raises(SystemExit) as exc_info:
        main(["--help"])
    assert exc_info.value.code == 0
    out, _ = capsys.readouterr()
    for command in ("show", "check", "date-lang", "generate-secret", "version"):
        assert command in out


def test_check_ok(work_dir, fake_git, capsys):
    assert main(["check"]) == 0
    assert capsys.readouterr().out.strip() == "ok"


def test_check_reports_config_error(work_dir, write_ini, fake_git, capsys):
    write_ini("[time]\nFORMAT = %Y\n")
    assert main(["check"]) == 1
    _, err = capsys.readouterr()
    assert "error: Can't create time properly" in err


def test_check_reports_undecodable_config(work_dir, custom_conf, fake_git, capsys):
    custom_conf.parent.mkdir(parents=True)
    custom_conf.write_bytes(b"[server]\nDOMAIN = \xff\xfe\n")
    assert main(["check"]) == 1
    _, err = capsys.readouterr()
    assert "error: Failed to load custom conf" in err
    assert "Traceback" not in err


def test_show_json_masks_secrets(work_dir, write_ini, fake_git, capsys):
    write_ini("[server]\nDOMAIN = git.example.com\n[security]\nINTERNAL_TOKEN = topsecret\n")
    assert main(["show", "--format", "json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["server"]["domain"] == "git.example.com"
    assert data["security"]["internal_token"] == SECRET_MASK
    assert data["mirror"]["default_interval"] == "8h0m0s"
    assert "jwt_secret_bytes" not in data["lfs"]


def test_show_secrets_flag(work_dir, write_ini, fake_git, capsys):
    write_ini("[security]\nINTERNAL_TOKEN = topsecret\n")
    assert main(["show", "--format", "json", "--show-secrets", "--section", "security"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert list(data) == ["security"]
    assert data["security"]["internal_token"] == "topsecret"


def test_show_yaml_section(work_dir, fake_git, capsys):
    assert main(["show", "--section", "server"]) == 0
    data = yaml.safe_load(capsys.readouterr().out)
    assert data["server"]["root_url"] == "http://localhost:3000/"


def test_show_unknown_section(work_dir, fake_git, capsys):
    assert main(["show", "--section", "nope"]) == 1
    assert "unknown section" in capsys.readouterr().err


def test_date_lang(work_dir, write_ini, fake_git, capsys):
    write_ini("[i18n.datelang]\nde-DE = de\n")
    assert main(["date-lang", "de-DE"]) == 0
    assert capsys.readouterr().out.strip() == "de"


def test_custom_config_option(work_dir, tmp_path, fake_git, capsys):
    conf = tmp_path / "alt.ini"
    conf.write_text("APP_NAME = Alt Forge\n")
    assert main(["--config", str(conf), "show", "--section", "app", "--format", "json"]) == 0
    assert json.loads(capsys.readouterr().out)["app"]["name"] == "Alt Forge"


@pytest.mark.parametrize("kind", ["lfs", "internal"])
def test_generate_secret(kind, capsys):
    assert main(["generate-secret", kind]) == 0
    assert capsys.readouterr().out.strip()


def test_module_main_version_via_subprocess():
    """Running python -m forgecfg.cli version exits 0 and prints version (tests __main__ path)."""
    result = subprocess.run(
        [sys.executable, "-m", "forgecfg.cli", "version"],
        capture_output=True,
        text=True,
        timeout=10,
    )
    assert result.returncode == 0
    assert __version__ in result.stdout
