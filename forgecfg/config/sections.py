"""
Section-to-group mapping for the plain groups (database, repository, picture, ui, cron, git, ...).

- map_section(): pydantic validation of a whole section onto a group. Unlike the
  ConfigSource getters, which fall back to the default on an unparsable value,
  a value the group's field type rejects (e.g. DEFAULT_PRIVATE = bogus,
  LFS_HTTP_AUTH_EXPIRY = abc) is a fatal ConfigError.
- load_*(): one function per group; derivations that depend on other groups take them as arguments.
"""

from __future__ import annotations

import os
import re
import shlex
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import urlsplit

import structlog
from pydantic import BaseModel, ValidationError

from forgecfg.config.errors import ConfigError
from forgecfg.config.git import CREDENTIAL_HELPER_ARGS, CREDENTIAL_HELPER_MIN_GIT_VERSION, version_at_least
from forgecfg.config.schemas import (
    DEFAULT_LANG_NAMES,
    DEFAULT_LANGS,
    AdminSettings,
    APISettings,
    ArchiveCleanupJob,
    AttachmentSettings,
    CheckRepoStatsJob,
    CronSettings,
    DatabaseSettings,
    DeletedBranchesCleanupJob,
    GitSettings,
    GitTimeout,
    I18nSettings,
    MarkdownSettings,
    MarkupParser,
    MetricsSettings,
    MirrorSettings,
    PictureSettings,
    RepoHealthCheckJob,
    RepositoryEditor,
    RepositoryLocal,
    RepositoryPullRequest,
    RepositorySettings,
    RepositoryUpload,
    SyncExternalUsersJob,
    TimeSettings,
    U2FSettings,
    UIAdmin,
    UIMeta,
    UISettings,
    UIUser,
    UpdateMirrorsJob,
)
from forgecfg.config.source import ConfigSource, Section
from forgecfg.config.timefmt import NAMED_FORMATS, resolve_time_format

logger = structlog.get_logger(__name__)

G = TypeVar("G", bound=BaseModel)

GRAVATAR_SOURCES = {
    "duoshuo": "http://gravatar.duoshuo.com/avatar/",
    "gravatar": "https://secure.gravatar.com/avatar/",
    "libravatar": "https://seccdn.libravatar.org/avatar/",
}

_EXTENSION_RE = re.compile(r"\.\w")


def map_section(model: type[G], section: Section, defaults: dict[str, Any] | None = None) -> G:
    """Validate section keys (plus alias-keyed defaults underneath them) into model.

    Raises:
        ConfigError: a present key has a value its field type rejects; the
            default is never substituted.
    """
    data = {**(defaults or {}), **section.to_dict()}
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Failed to map {section.name or 'root'} settings: {e}",
            section=section.name,
        ) from e


def abs_path(path: str, base: str) -> str:
    """path made absolute against base, forward slashes."""
    p = Path(path)
    if not p.is_absolute():
        p = Path(base) / p
    return Path(os.path.normpath(p)).as_posix()


def force_path_separator(path: str, section: str, key: str) -> None:
    if "\\" in path:
        raise ConfigError(
            "Do not use '\\' or '\\\\' in paths, instead, please use '/' in all places",
            section=section,
            key=key,
        )


def load_database(source: ConfigSource, work_path: str) -> DatabaseSettings:
    sec = source.section("database")
    db_type = sec.get_str("DB_TYPE", "mysql")
    return DatabaseSettings(
        db_type=db_type,
        host=sec.get_str("HOST", "127.0.0.1:3306"),
        name=sec.get_str("NAME", "gitea"),
        user=sec.get_str("USER", "root"),
        passwd=sec.get_str("PASSWD"),
        ssl_mode=sec.get_str("SSL_MODE", "disable"),
        path=abs_path(sec.get_str("PATH", "data/gitea.db"), work_path),
        use_sqlite3=db_type == "sqlite3",
        use_mysql=db_type == "mysql",
        use_mssql=db_type == "mssql",
        use_postgresql=db_type == "postgres",
        use_tidb=db_type == "tidb",
        log_sql=sec.get_bool("LOG_SQL", True),
        iterate_buffer_size=sec.get_int("ITERATE_BUFFER_SIZE", 50),
        db_retries=sec.get_int("DB_RETRIES", 10),
        db_retry_backoff=sec.get_duration("DB_RETRY_BACKOFF", timedelta(seconds=3)),
    )


def load_attachment(source: ConfigSource, data_path: str, work_path: str) -> AttachmentSettings:
    sec = source.section("attachment")
    path = sec.get_str("PATH", f"{data_path}/attachments")
    allowed = sec.get_str("ALLOWED_TYPES", "image/jpeg,image/png,application/zip,application/gzip")
    return AttachmentSettings(
        path=abs_path(path, work_path),
        allowed_types=allowed.replace("|", ","),
        max_size=sec.get_int("MAX_SIZE", 4),
        max_files=sec.get_int("MAX_FILES", 5),
        enabled=sec.get_bool("ENABLED", True),
    )


def load_time(source: ConfigSource) -> TimeSettings:
    name = source.section("time").get_str("FORMAT", "RFC1123")
    fmt = resolve_time_format(name)
    if name not in NAMED_FORMATS:
        logger.debug("custom_time_format", format=fmt)
    return TimeSettings(format_name=name, format=fmt)


def load_repository(source: ConfigSource, home_dir: str, work_path: str) -> RepositorySettings:
    sec = source.section("repository")
    root = sec.get_str("ROOT", f"{home_dir}/gitea-repositories")
    force_path_separator(root, "repository", "ROOT")
    repo = map_section(
        RepositorySettings,
        sec,
        {
            "EDITOR": map_section(RepositoryEditor, source.section("repository.editor")),
            "UPLOAD": map_section(RepositoryUpload, source.section("repository.upload")),
            "LOCAL": map_section(RepositoryLocal, source.section("repository.local")),
            "PULL_REQUEST": map_section(RepositoryPullRequest, source.section("repository.pull-request")),
        },
    )
    upload = repo.upload.model_copy(update={"temp_path": abs_path(repo.upload.temp_path, work_path)})
    return repo.model_copy(
        update={
            "root": abs_path(root, work_path),
            "script_type": sec.get_str("SCRIPT_TYPE", "bash"),
            "upload": upload,
        }
    )


def load_picture(
    source: ConfigSource,
    data_path: str,
    work_path: str,
    *,
    offline_mode: bool,
    install_lock: bool,
) -> PictureSettings:
    sec = source.section("picture")
    upload_path = sec.get_str("AVATAR_UPLOAD_PATH", f"{data_path}/avatars")
    force_path_separator(upload_path, "picture", "AVATAR_UPLOAD_PATH")
    name = sec.get_str("GRAVATAR_SOURCE", "gravatar")
    gravatar_source = GRAVATAR_SOURCES.get(name, name)

    disable_gravatar = sec.get_bool("DISABLE_GRAVATAR")
    federated = sec.get_bool("ENABLE_FEDERATED_AVATAR", not install_lock)
    if offline_mode:
        disable_gravatar = True
        federated = False
    if disable_gravatar:
        federated = False

    use_https, fallback_host = True, ""
    if federated or not disable_gravatar:
        try:
            parsed = urlsplit(gravatar_source)
        except ValueError as e:
            raise ConfigError(
                f"Failed to parse Gravatar URL({gravatar_source}): {e}",
                section="picture",
                key="GRAVATAR_SOURCE",
            ) from e
        if federated:
            use_https = parsed.scheme == "https"
            fallback_host = parsed.netloc

    return PictureSettings(
        avatar_upload_path=abs_path(upload_path, work_path),
        avatar_max_width=sec.get_int("AVATAR_MAX_WIDTH", 4096),
        avatar_max_height=sec.get_int("AVATAR_MAX_HEIGHT", 3072),
        gravatar_source=gravatar_source,
        disable_gravatar=disable_gravatar,
        enable_federated_avatar=federated,
        libravatar_use_https=use_https,
        libravatar_fallback_host=fallback_host,
    )


def load_ui(source: ConfigSource) -> UISettings:
    return map_section(
        UISettings,
        source.section("ui"),
        {
            "ADMIN": map_section(UIAdmin, source.section("ui.admin")),
            "USER": map_section(UIUser, source.section("ui.user")),
            "META": map_section(UIMeta, source.section("ui.meta")),
        },
    )


def load_markdown(source: ConfigSource) -> MarkdownSettings:
    return map_section(MarkdownSettings, source.section("markdown"))


def load_admin(source: ConfigSource) -> AdminSettings:
    return map_section(AdminSettings, source.section("admin"))


def load_api(source: ConfigSource) -> APISettings:
    return map_section(APISettings, source.section("api"))


def load_metrics(source: ConfigSource) -> MetricsSettings:
    return map_section(MetricsSettings, source.section("metrics"))


def load_cron(source: ConfigSource) -> CronSettings:
    return map_section(
        CronSettings,
        source.section("cron"),
        {
            "UPDATE_MIRRORS": map_section(UpdateMirrorsJob, source.section("cron.update_mirrors")),
            "REPO_HEALTH_CHECK": map_section(RepoHealthCheckJob, source.section("cron.repo_health_check")),
            "CHECK_REPO_STATS": map_section(CheckRepoStatsJob, source.section("cron.check_repo_stats")),
            "ARCHIVE_CLEANUP": map_section(ArchiveCleanupJob, source.section("cron.archive_cleanup")),
            "SYNC_EXTERNAL_USERS": map_section(SyncExternalUsersJob, source.section("cron.sync_external_users")),
            "DELETED_BRANCHES_CLEANUP": map_section(
                DeletedBranchesCleanupJob, source.section("cron.deleted_branches_cleanup")
            ),
        },
    )


def load_git(source: ConfigSource, version: str) -> GitSettings:
    git = map_section(
        GitSettings,
        source.section("git"),
        {"TIMEOUT": map_section(GitTimeout, source.section("git.timeout"))},
    )
    args: list[str] = []
    if version_at_least(version, CREDENTIAL_HELPER_MIN_GIT_VERSION):
        # git would otherwise ask configured helpers and could leak stored credentials
        args.extend(CREDENTIAL_HELPER_ARGS)
    return git.model_copy(update={"version": version, "global_command_args": args})


def load_mirror(source: ConfigSource) -> MirrorSettings:
    sec = source.section("mirror")
    min_interval = sec.get_duration("MIN_INTERVAL", timedelta(minutes=10))
    default_interval = sec.get_duration("DEFAULT_INTERVAL", timedelta(hours=8))
    if min_interval < timedelta(minutes=1):
        logger.warning("mirror_min_interval_too_low", min_interval=str(min_interval))
        min_interval = timedelta(minutes=1)
    if default_interval < min_interval:
        logger.warning(
            "mirror_default_interval_below_min",
            default_interval=str(default_interval),
            min_interval=str(min_interval),
        )
        default_interval = timedelta(hours=8)
    return MirrorSettings(default_interval=default_interval, min_interval=min_interval)


def load_i18n(source: ConfigSource) -> I18nSettings:
    sec = source.section("i18n")
    return I18nSettings(
        langs=sec.get_list("LANGS") or list(DEFAULT_LANGS),
        names=sec.get_list("NAMES") or list(DEFAULT_LANG_NAMES),
        date_langs=source.section("i18n.datelang").keys_hash(),
    )


def load_markup_parsers(source: ConfigSource) -> list[MarkupParser]:
    """External renderers from [markup.<name>]; incomplete declarations are skipped with a warning."""
    parsers: list[MarkupParser] = []
    for sec in source.child_sections("markup"):
        name = sec.name[len("markup."):]
        if not name:
            logger.warning("markup_name_empty", section=sec.name)
            continue

        exts = []
        for ext in sec.get_list("FILE_EXTENSIONS"):
            if _EXTENSION_RE.search(ext):
                exts.append(ext)
            else:
                logger.warning("markup_extension_invalid", section=sec.name, extension=ext)
        if not exts:
            logger.warning("markup_extensions_empty", section=sec.name, markup=name)
            continue

        command = sec.get_str("RENDER_COMMAND")
        if not command:
            logger.warning("markup_render_command_empty", section=sec.name, markup=name)
            continue

        parsers.append(
            MarkupParser(
                enabled=sec.get_bool("ENABLED"),
                markup_name=name,
                command=command,
                file_extensions=exts,
                is_input_file=sec.get_bool("IS_INPUT_FILE"),
            )
        )
    return parsers


def load_u2f(source: ConfigSource, root_url: str) -> U2FSettings:
    sec = source.section("U2F")
    default = root_url.rstrip("/")
    try:
        facets = shlex.split(sec.get_str("TRUSTED_FACETS", default))
    except ValueError as e:
        logger.warning("u2f_trusted_facets_invalid", error=str(e))
        facets = []
    return U2FSettings(app_id=sec.get_str("APP_ID", default), trusted_facets=facets)
