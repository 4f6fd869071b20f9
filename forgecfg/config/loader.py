"""
Config loader: app.ini discovery, core groups, generated secrets, cached snapshot.

- Work path from FORGE_WORK_DIR or the directory of the executable.
- Custom directory from FORGE_CUSTOM or <work>/custom; custom config <custom>/conf/app.ini.
- load_core() builds every startup group; load_settings() adds the LFS check and services.
- Generated secrets (LFS JWT secret, internal token) are written back to the custom config.
- Fatal problems raise ConfigError; the caller decides whether to exit.
"""

from __future__ import annotations

import configparser
import getpass
import ipaddress
import os
import re
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Mapping
from urllib.parse import urlsplit

import structlog

from forgecfg.config import generate, sections
from forgecfg.config.errors import ConfigError
from forgecfg.config.git import binary_version, check_lfs_version
from forgecfg.config.schemas import (
    LANDING_PAGES,
    AppSettings,
    LFSSettings,
    SecuritySettings,
    ServerSettings,
    Settings,
    SSHSettings,
)
from forgecfg.config.source import ROOT_SECTION, ConfigSource

logger = structlog.get_logger(__name__)

WORK_DIR_ENV = "FORGE_WORK_DIR"
CUSTOM_DIR_ENV = "FORGE_CUSTOM"
DEFAULT_CUSTOM_CONF = "conf/app.ini"

# Global snapshot (built once, read-only afterwards)
_settings: Settings | None = None


def reset_settings_cache() -> None:
    """Clear the cached snapshot (for tests). Next get_settings() loads again."""
    global _settings
    _settings = None


def _slash(path: str) -> str:
    return path.replace("\\", "/")


def resolve_app_path(argv0: str | None = None) -> str:
    """Absolute path of the running executable, forward slashes."""
    exe = argv0 or sys.argv[0] or sys.executable
    if not os.path.isabs(exe):
        found = shutil.which(exe)
        if found:
            exe = found
    return _slash(os.path.abspath(exe))


def resolve_work_path(app_path: str, environ: Mapping[str, str]) -> str:
    """FORGE_WORK_DIR if set, else the directory holding the executable."""
    work = environ.get(WORK_DIR_ENV, "")
    if not work:
        i = app_path.rfind("/")
        work = app_path if i == -1 else app_path[:i]
    return _slash(work)


def resolve_custom_path(work_path: str, environ: Mapping[str, str]) -> str:
    custom = environ.get(CUSTOM_DIR_ENV, "")
    if not custom:
        return f"{work_path}/custom"
    if not os.path.isabs(custom):
        return f"{work_path}/{custom}"
    return _slash(custom)


def resolve_custom_conf(custom_path: str, custom_conf: str | None) -> str:
    if not custom_conf:
        return f"{custom_path}/{DEFAULT_CUSTOM_CONF}"
    if not os.path.isabs(custom_conf):
        return f"{custom_path}/{custom_conf}"
    return _slash(custom_conf)


def create_pid_file(pid_path: str) -> None:
    """Write the current process id to pid_path, creating parent directories."""
    path = Path(pid_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Failed to create PID folder: {e}") from e
    try:
        path.write_text(str(os.getpid()), encoding="ascii")
    except OSError as e:
        raise ConfigError(f"Failed to write PID information: {e}") from e


def current_username() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return ""


def is_run_user_match_current_user(run_user: str, is_windows: bool = os.name == "nt") -> tuple[str, bool]:
    """(actual user, matches). Always matches on Windows, where SSH login is not the main access path."""
    if is_windows:
        return "", True
    current = current_username()
    return current, run_user == current


def _home_dir() -> str:
    try:
        return _slash(str(Path.home()))
    except RuntimeError as e:
        raise ConfigError(f"Failed to get home directory: {e}") from e


def parse_unix_socket_permission(raw: str) -> int:
    """Octal permission text such as "666"; at most 0777."""
    if not re.fullmatch(r"[0-7]+", raw.strip()):
        raise ConfigError(
            f"Failed to parse unixSocketPermission: {raw}",
            section="server",
            key="UNIX_SOCKET_PERMISSION",
        )
    value = int(raw.strip(), 8)
    if value > 0o777:
        raise ConfigError(
            f"Failed to parse unixSocketPermission: {raw}",
            section="server",
            key="UNIX_SOCKET_PERMISSION",
        )
    return value


def default_root_url(protocol: str, domain: str, http_port: str) -> str:
    url = f"{protocol}://{domain}"
    if (protocol == "http" and http_port != "80") or (protocol == "https" and http_port != "443"):
        url += f":{http_port}"
    return url


def normalize_root_url(url: str) -> str:
    """Exactly one trailing slash."""
    return url.rstrip("/") + "/"


def default_local_url(protocol: str, http_addr: str, http_port: str, root_url: str) -> str:
    if protocol == "unix":
        return "http://unix/"
    if protocol == "fcgi":
        return root_url
    host = "localhost" if http_addr == "0.0.0.0" else http_addr
    return f"{protocol}://{host}:{http_port}/"


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def load_server(source: ConfigSource, work_path: str) -> ServerSettings:
    sec = source.section("server")
    raw_protocol = sec.get_str("PROTOCOL")
    protocol = "http"
    cert_file = key_file = ""
    permission = 0o666
    if raw_protocol == "https":
        protocol = "https"
        cert_file = sec.get_str("CERT_FILE")
        key_file = sec.get_str("KEY_FILE")
    elif raw_protocol == "fcgi":
        protocol = "fcgi"
    elif raw_protocol == "unix":
        protocol = "unix"
        permission = parse_unix_socket_permission(sec.get_str("UNIX_SOCKET_PERMISSION", "666"))

    enable_letsencrypt = sec.get_bool("ENABLE_LETSENCRYPT")
    letsencrypt_tos = sec.get_bool("LETSENCRYPT_ACCEPTTOS")
    if enable_letsencrypt and not letsencrypt_tos:
        logger.warning("letsencrypt_tos_not_accepted")
        enable_letsencrypt = False

    domain = sec.get_str("DOMAIN", "localhost")
    http_addr = sec.get_str("HTTP_ADDR", "0.0.0.0")
    http_port = sec.get_str("HTTP_PORT", "3000")

    root_url = normalize_root_url(sec.get_str("ROOT_URL", default_root_url(protocol, domain, http_port)))
    try:
        parsed = urlsplit(root_url)
        hostname = parsed.hostname or ""
    except ValueError as e:
        raise ConfigError(f"Invalid ROOT_URL '{root_url}': {e}", section="server", key="ROOT_URL") from e
    # "/{subpath}" without trailing slash, empty when served from the root
    sub_url = parsed.path.removesuffix("/")
    if hostname and hostname != domain and not _is_ip(hostname):
        domain = hostname

    app_data_path = sec.get_str("APP_DATA_PATH", f"{work_path}/data")
    pprof_data_path = sec.get_str("PPROF_DATA_PATH", f"{work_path}/data/tmp/pprof")
    if not os.path.isabs(pprof_data_path):
        pprof_data_path = f"{work_path}/{pprof_data_path}"

    return ServerSettings(
        protocol=protocol,
        domain=domain,
        http_addr=http_addr,
        http_port=http_port,
        root_url=root_url,
        sub_url=sub_url,
        sub_url_depth=sub_url.count("/"),
        local_url=sec.get_str(
            "LOCAL_ROOT_URL", default_local_url(protocol, http_addr, http_port, root_url)
        ),
        redirect_other_port=sec.get_bool("REDIRECT_OTHER_PORT"),
        port_to_redirect=sec.get_str("PORT_TO_REDIRECT", "80"),
        offline_mode=sec.get_bool("OFFLINE_MODE"),
        disable_router_log=sec.get_bool("DISABLE_ROUTER_LOG"),
        cert_file=cert_file,
        key_file=key_file,
        static_root_path=sec.get_str("STATIC_ROOT_PATH", work_path),
        app_data_path=app_data_path,
        enable_gzip=sec.get_bool("ENABLE_GZIP"),
        landing_page=LANDING_PAGES.get(sec.get_str("LANDING_PAGE", "home"), "/"),
        unix_socket_permission=permission,
        enable_pprof=sec.get_bool("ENABLE_PPROF"),
        pprof_data_path=pprof_data_path,
        enable_letsencrypt=enable_letsencrypt,
        letsencrypt_tos=letsencrypt_tos,
        letsencrypt_directory=sec.get_str("LETSENCRYPT_DIRECTORY", "https"),
        letsencrypt_email=sec.get_str("LETSENCRYPT_EMAIL"),
    )


def load_ssh(source: ConfigSource, server: ServerSettings, home_dir: str, run_user: str) -> SSHSettings:
    sec = source.section("server")
    port = sec.get_int("SSH_PORT", 22)
    ssh = sections.map_section(
        SSHSettings,
        sec,
        {
            "SSH_DOMAIN": server.domain,
            "SSH_ROOT_PATH": f"{home_dir}/.ssh",
            "SSH_KEY_TEST_PATH": _slash(tempfile.gettempdir()),
            "BUILTIN_SSH_SERVER_USER": run_user,
        },
    )
    sizes: dict[str, int] = {}
    for name, value in source.section("ssh.minimum_key_sizes").keys_hash().items():
        try:
            bits = int(value.strip())
        except ValueError:
            bits = 0
        if bits != -1:
            sizes[name.lower()] = bits

    ssh = ssh.model_copy(
        update={
            "keygen_path": sec.get_str("SSH_KEYGEN_PATH", "ssh-keygen"),
            "port": port,
            "listen_port": sec.get_int("SSH_LISTEN_PORT", port),
            # a disabled SSH service never starts the builtin server
            "start_builtin_server": ssh.start_builtin_server and not ssh.disabled,
            "minimum_key_size_check": sec.get_bool("MINIMUM_KEY_SIZE_CHECK"),
            "minimum_key_sizes": sizes,
        }
    )

    if not ssh.disabled and not ssh.start_builtin_server:
        for path, mode in ((ssh.root_path, 0o700), (ssh.key_test_path, 0o755)):
            try:
                Path(path).mkdir(mode=mode, parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigError(f"Failed to create '{path}': {e}") from e
    return ssh


def load_lfs(source: ConfigSource, server: ServerSettings, work_path: str, custom_conf: str) -> LFSSettings:
    sec = source.section("server")
    lfs = sections.map_section(LFSSettings, sec)
    content_path = sec.get_str("LFS_CONTENT_PATH", f"{server.app_data_path}/lfs")
    if not os.path.isabs(content_path):
        content_path = f"{work_path}/{content_path}"
    lfs = lfs.model_copy(
        update={
            "content_path": content_path,
            "http_auth_expiry": sec.get_duration("LFS_HTTP_AUTH_EXPIRY", lfs.http_auth_expiry),
        }
    )
    if not lfs.start_server:
        return lfs

    try:
        Path(content_path).mkdir(mode=0o700, parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Failed to create '{content_path}': {e}") from e

    secret = lfs.jwt_secret_base64
    secret_bytes = generate.decode_lfs_jwt_secret(secret)
    if secret_bytes is None:
        secret = generate.new_lfs_jwt_secret()
        secret_bytes = generate.decode_lfs_jwt_secret(secret)
        generate.persist_secret(custom_conf, "server", "LFS_JWT_SECRET", secret)
    return lfs.model_copy(update={"jwt_secret_base64": secret, "jwt_secret_bytes": secret_bytes})


def load_security(source: ConfigSource, custom_conf: str) -> SecuritySettings:
    sec = source.section("security")
    token = sec.get_str("INTERNAL_TOKEN")
    if not token:
        token = generate.new_internal_token()
        generate.persist_secret(custom_conf, "security", "INTERNAL_TOKEN", token)
    return SecuritySettings(
        install_lock=sec.get_bool("INSTALL_LOCK"),
        secret_key=sec.get_str("SECRET_KEY", "!#@FDEWREWR&*("),
        login_remember_days=sec.get_int("LOGIN_REMEMBER_DAYS", 7),
        cookie_username=sec.get_str("COOKIE_USERNAME", "gitea_awesome"),
        cookie_remember_name=sec.get_str("COOKIE_REMEMBER_NAME", "gitea_incredible"),
        reverse_proxy_authentication_user=sec.get_str("REVERSE_PROXY_AUTHENTICATION_USER", "X-WEBAUTH-USER"),
        reverse_proxy_authentication_email=sec.get_str("REVERSE_PROXY_AUTHENTICATION_EMAIL", "X-WEBAUTH-EMAIL"),
        min_password_length=sec.get_int("MIN_PASSWORD_LENGTH", 6),
        import_local_paths=sec.get_bool("IMPORT_LOCAL_PATHS"),
        disable_git_hooks=sec.get_bool("DISABLE_GIT_HOOKS"),
        internal_token=token,
    )


def _read_source(custom_conf: str) -> ConfigSource:
    source = ConfigSource()
    if Path(custom_conf).is_file():
        try:
            source.append(custom_conf)
        except (OSError, UnicodeDecodeError, configparser.Error) as e:
            raise ConfigError(f"Failed to load custom conf '{custom_conf}': {e}") from e
    else:
        logger.warning(
            "custom_config_not_found",
            path=custom_conf,
            hint="ignore this if you're running first time",
        )
    return source


def load_core(
    custom_conf: str | None = None,
    custom_pid: str | None = None,
    *,
    app_path: str | None = None,
    git_version: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build the startup snapshot from the custom config file.

    Args:
        custom_conf: Config file path (default <custom>/conf/app.ini; relative to the custom dir).
        custom_pid: Write the process id here when given.
        app_path: Executable path override (default from sys.argv[0]).
        git_version: Skip running `git --version` and use this version.
        environ: Environment to read FORGE_WORK_DIR / FORGE_CUSTOM from (default os.environ).

    Returns:
        Settings with every core group populated (service groups at their defaults).

    Raises:
        ConfigError: on any unrecoverable configuration problem.
    """
    env = os.environ if environ is None else environ
    is_windows = os.name == "nt"
    app = resolve_app_path(app_path)
    work_path = resolve_work_path(app, env)
    custom_path = resolve_custom_path(work_path, env)
    if custom_pid:
        create_pid_file(custom_pid)
    conf = resolve_custom_conf(custom_path, custom_conf)

    source = _read_source(conf)
    home_dir = _home_dir()
    root = source.section(ROOT_SECTION)

    log_root = source.section("log").get_str("ROOT_PATH", f"{work_path}/log")
    sections.force_path_separator(log_root, "log", "ROOT_PATH")

    server = load_server(source, work_path)
    run_user = root.get_str("RUN_USER", current_username())
    ssh = load_ssh(source, server, home_dir, run_user)
    lfs = load_lfs(source, server, work_path, conf)
    security = load_security(source, conf)

    # only an installed instance must run as the configured user
    if security.install_lock:
        actual, match = is_run_user_match_current_user(run_user, is_windows)
        if not match:
            raise ConfigError(f"Expect user '{run_user}' but current user is: {actual}")

    other = source.section("other")
    run_mode = root.get_str("RUN_MODE", "dev")
    app_settings = AppSettings(
        name=root.get_str("APP_NAME", "Gitea: Git with a cup of tea"),
        path=app,
        work_path=work_path,
        data_path=server.app_data_path,
        custom_path=custom_path,
        custom_conf=conf,
        custom_pid=custom_pid or "",
        run_user=run_user,
        run_mode=run_mode,
        prod_mode=run_mode == "prod",
        is_windows=is_windows,
        has_robots_txt=Path(custom_path, "robots.txt").is_file(),
        show_footer_branding=other.get_bool("SHOW_FOOTER_BRANDING"),
        show_footer_version=other.get_bool("SHOW_FOOTER_VERSION", True),
        show_footer_template_load_time=other.get_bool("SHOW_FOOTER_TEMPLATE_LOAD_TIME", True),
    )

    version = git_version or binary_version()
    settings = Settings(
        app=app_settings,
        server=server,
        ssh=ssh,
        lfs=lfs,
        security=security,
        database=sections.load_database(source, work_path),
        repository=sections.load_repository(source, home_dir, work_path),
        attachment=sections.load_attachment(source, server.app_data_path, work_path),
        time=sections.load_time(source),
        picture=sections.load_picture(
            source,
            server.app_data_path,
            work_path,
            offline_mode=server.offline_mode,
            install_lock=security.install_lock,
        ),
        ui=sections.load_ui(source),
        markdown=sections.load_markdown(source),
        admin=sections.load_admin(source),
        cron=sections.load_cron(source),
        git=sections.load_git(source, version),
        mirror=sections.load_mirror(source),
        api=sections.load_api(source),
        u2f=sections.load_u2f(source, server.root_url),
        metrics=sections.load_metrics(source),
        i18n=sections.load_i18n(source),
        markup_parsers=sections.load_markup_parsers(source),
    )
    settings = settings.model_copy(
        update={"log": settings.log.model_copy(update={"root_path": log_root})}
    )
    settings._source = source
    return settings


def load_settings(
    custom_conf: str | None = None,
    custom_pid: str | None = None,
    **overrides,
) -> Settings:
    """Full startup pipeline: core groups, LFS git check, then services."""
    from forgecfg.config.services import load_services

    settings = load_core(custom_conf, custom_pid, **overrides)
    settings = check_lfs_version(settings, git_version=overrides.get("git_version"))
    return load_services(settings)


def get_settings() -> Settings:
    """Return the process-wide snapshot, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
