"""Tests for section-mapped groups: mirror, markup, picture, cron, git, ssh, repository and friends."""

from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from forgecfg.config.git import CREDENTIAL_HELPER_ARGS
from forgecfg.config.sections import load_git, load_markup_parsers, load_mirror
from forgecfg.config.source import ConfigSource


def _source(text: str) -> ConfigSource:
    src = ConfigSource()
    src.read_string(text)
    return src


@pytest.mark.parametrize(
    "min_interval, default_interval",
    [("10s", "30s"), ("30s", "10s")],
)
def test_mirror_intervals_corrected_with_warnings(min_interval, default_interval):
    text = f"[mirror]\nMIN_INTERVAL = {min_interval}\nDEFAULT_INTERVAL = {default_interval}\n"
    with capture_logs() as logs:
        mirror = load_mirror(_source(text))
    assert mirror.min_interval == timedelta(minutes=1)
    assert mirror.default_interval == timedelta(hours=8)
    events = [(e["event"], e["log_level"]) for e in logs]
    assert ("mirror_min_interval_too_low", "warning") in events
    assert ("mirror_default_interval_below_min", "warning") in events


def test_mirror_intervals_kept_when_sane():
    with capture_logs() as logs:
        mirror = load_mirror(_source("[mirror]\nMIN_INTERVAL = 5m\nDEFAULT_INTERVAL = 1h\n"))
    assert mirror.min_interval == timedelta(minutes=5)
    assert mirror.default_interval == timedelta(hours=1)
    assert logs == []


def test_markup_parsers_valid_and_dropped():
    text = """
[markup.asciidoc]
ENABLED = true
FILE_EXTENSIONS = .adoc,.asciidoc, bad
RENDER_COMMAND = asciidoc --out-file=- -
IS_INPUT_FILE = false

[markup.nocommand]
ENABLED = true
FILE_EXTENSIONS = .nc

[markup.noext]
ENABLED = true
FILE_EXTENSIONS = txt
RENDER_COMMAND = cat
"""
    with capture_logs() as logs:
        parsers = load_markup_parsers(_source(text))
    assert [p.markup_name for p in parsers] == ["asciidoc"]
    assert parsers[0].file_extensions == [".adoc", ".asciidoc"]
    assert parsers[0].command == "asciidoc --out-file=- -"
    assert parsers[0].enabled is True
    events = [e["event"] for e in logs]
    assert "markup_extension_invalid" in events
    assert "markup_render_command_empty" in events
    assert "markup_extensions_empty" in events


def test_git_credential_helper_args_by_version():
    src = _source("")
    assert load_git(src, "2.20.1").global_command_args == CREDENTIAL_HELPER_ARGS
    assert load_git(src, "2.8.0").global_command_args == []


def test_git_section_and_timeouts(load, write_ini):
    write_ini("[git]\nMAX_GIT_DIFF_LINES = 500\nGC_ARGS = --aggressive --auto\n[git.timeout]\nMIGRATE = 900\n")
    git = load().git
    assert git.max_git_diff_lines == 500
    assert git.gc_args == ["--aggressive", "--auto"]
    assert git.timeout.migrate == 900
    assert git.timeout.clone == 300
    assert git.version == "2.20.1"


def test_cron_jobs(load, write_ini):
    write_ini(
        """
[cron.update_mirrors]
SCHEDULE = @every 30m

[cron.repo_health_check]
TIMEOUT = 2m
ARGS = --no-dangling --verbose

[cron.archive_cleanup]
ENABLED = false
OLDER_THAN = 48h
"""
    )
    cron = load().cron
    assert cron.update_mirrors.schedule == "@every 30m"
    assert cron.repo_health_check.timeout == timedelta(minutes=2)
    assert cron.repo_health_check.args == ["--no-dangling", "--verbose"]
    assert cron.archive_cleanup.enabled is False
    assert cron.archive_cleanup.older_than == timedelta(hours=48)
    assert cron.check_repo_stats.run_at_start is True
    assert cron.sync_external_users.update_existing is True
    assert cron.deleted_branches_cleanup.schedule == "@every 24h"


def test_picture_offline_mode_disables_gravatar(load, write_ini):
    write_ini("[server]\nOFFLINE_MODE = true\n[picture]\nENABLE_FEDERATED_AVATAR = true\n")
    picture = load().picture
    assert picture.disable_gravatar is True
    assert picture.enable_federated_avatar is False


def test_picture_named_gravatar_source(load, write_ini):
    write_ini("[picture]\nGRAVATAR_SOURCE = libravatar\nENABLE_FEDERATED_AVATAR = true\n")
    picture = load().picture
    assert picture.gravatar_source == "https://seccdn.libravatar.org/avatar/"
    assert picture.enable_federated_avatar is True
    assert picture.libravatar_use_https is True
    assert picture.libravatar_fallback_host == "seccdn.libravatar.org"


def test_picture_literal_gravatar_source(load, write_ini):
    write_ini("[picture]\nGRAVATAR_SOURCE = http://avatars.example.com/avatar/\n")
    assert load().picture.gravatar_source == "http://avatars.example.com/avatar/"


def test_federated_avatar_defaults_off_after_install(load, write_ini):
    write_ini("[security]\nINSTALL_LOCK = true\nINTERNAL_TOKEN = t\n")
    assert load().picture.enable_federated_avatar is False


def test_database_flags_and_path(load, write_ini, work_dir):
    write_ini("[database]\nDB_TYPE = sqlite3\nPATH = data/forge.db\nDB_RETRY_BACKOFF = 10s\n")
    db = load().database
    assert db.use_sqlite3 is True
    assert db.use_mysql is False
    assert db.path == f"{work_dir.as_posix()}/data/forge.db"
    assert db.db_retry_backoff == timedelta(seconds=10)


def test_attachment_pipe_separated_types(load, write_ini, work_dir):
    write_ini("[attachment]\nALLOWED_TYPES = image/png|application/pdf\nMAX_SIZE = 10\n")
    attachment = load().attachment
    assert attachment.allowed_types == "image/png,application/pdf"
    assert attachment.max_size == 10
    assert attachment.path == f"{work_dir.as_posix()}/data/attachments"


def test_repository_subgroups(load, write_ini, work_dir):
    write_ini(
        """
[repository]
ROOT = repos
MAX_CREATION_LIMIT = 3

[repository.upload]
ALLOWED_TYPES = image/png|text/plain
TEMP_PATH = tmp/uploads

[repository.pull-request]
WORK_IN_PROGRESS_PREFIXES = Draft:
"""
    )
    repo = load().repository
    assert repo.root == f"{work_dir.as_posix()}/repos"
    assert repo.max_creation_limit == 3
    assert repo.upload.allowed_types == ["image/png", "text/plain"]
    assert repo.upload.temp_path == f"{work_dir.as_posix()}/tmp/uploads"
    assert repo.pull_request.work_in_progress_prefixes == ["Draft:"]
    assert repo.preferred_licenses == ["Apache License 2.0", "MIT License"]


def test_ssh_minimum_key_sizes(load, write_ini):
    write_ini("[server]\nMINIMUM_KEY_SIZE_CHECK = true\n[ssh.minimum_key_sizes]\nED25519 = 256\nRSA = 2048\nDSA = -1\n")
    ssh = load().ssh
    assert ssh.minimum_key_size_check is True
    assert ssh.minimum_key_sizes == {"ed25519": 256, "rsa": 2048}


def test_ssh_defaults_create_root(load, tmp_path):
    ssh = load().ssh
    assert ssh.root_path == (tmp_path / "home" / ".ssh").as_posix()
    assert (tmp_path / "home" / ".ssh").is_dir()
    assert ssh.port == ssh.listen_port == 22
    assert ssh.builtin_server_user == "git"


def test_ssh_disabled_never_starts_builtin_server(load, write_ini, tmp_path):
    write_ini("[server]\nDISABLE_SSH = true\nSTART_SSH_SERVER = true\nSSH_PORT = 2222\n")
    ssh = load().ssh
    assert ssh.disabled is True
    assert ssh.start_builtin_server is False
    assert ssh.listen_port == 2222
    assert not (tmp_path / "home" / ".ssh").exists()


def test_ssh_ciphers_list(load, write_ini):
    write_ini("[server]\nSSH_SERVER_CIPHERS = aes128-ctr, aes256-ctr\n")
    assert load().ssh.server_ciphers == ["aes128-ctr", "aes256-ctr"]


def test_i18n_defaults_and_date_lang(load, write_ini):
    write_ini("[i18n]\nLANGS = en-US,fr-FR\nNAMES = English,français\n[i18n.datelang]\nfr-FR = fr\n")
    settings = load()
    assert settings.i18n.langs == ["en-US", "fr-FR"]
    assert settings.date_lang("fr-FR") == "fr"
    assert settings.date_lang("xx-XX") == "en"


def test_u2f_defaults_to_root_url(load, write_ini):
    write_ini("[server]\nROOT_URL = https://git.example.com/\n")
    u2f = load().u2f
    assert u2f.app_id == "https://git.example.com"
    assert u2f.trusted_facets == ["https://git.example.com"]


def test_ui_and_markdown_mapping(load, write_ini):
    write_ini("[ui]\nEXPLORE_PAGING_NUM = 40\nTHEMES = gitea\n[ui.admin]\nUSER_PAGING_NUM = 10\n[markdown]\nENABLE_HARD_LINE_BREAK = true\n")
    settings = load()
    assert settings.ui.explore_paging_num == 40
    assert settings.ui.themes == ["gitea"]
    assert settings.ui.admin.user_paging_num == 10
    assert settings.ui.user.repo_paging_num == 15
    assert settings.markdown.enable_hard_line_break is True


def test_metrics_and_api(load, write_ini):
    write_ini("[metrics]\nENABLED = true\nTOKEN = s3cret\n[api]\nMAX_RESPONSE_ITEMS = 100\n")
    settings = load()
    assert settings.metrics.enabled is True
    assert settings.metrics.token == "s3cret"
    assert settings.api.max_response_items == 100
