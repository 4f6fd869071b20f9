"""
Service groups built after the core load: service flags, log sinks, cache, session, mailer, webhook.

Each new_* step takes the source and the snapshot built so far and returns an updated
snapshot, so a step can be re-run on its own (e.g. after changing [mailer]).
"""

from __future__ import annotations

import os
import re
import shlex
from email.errors import HeaderParseError, InvalidHeaderDefect
from email.headerregistry import HeaderRegistry
from pathlib import Path

import structlog

from forgecfg import __version__
from forgecfg.config.errors import ConfigError
from forgecfg.config.schemas import (
    WEBHOOK_TYPES,
    CacheSettings,
    LogSink,
    MailerSettings,
    ServiceSettings,
    SessionSettings,
    Settings,
    WebhookSettings,
)
from forgecfg.config.source import ConfigSource, Section

logger = structlog.get_logger(__name__)

LOG_LEVELS = {
    "Trace": 0,
    "Debug": 1,
    "Info": 2,
    "Warn": 3,
    "Error": 4,
    "Critical": 5,
}

# Persistence-layer logger understands four levels only
PERSISTENCE_LEVELS = {
    "Trace": "debug",
    "Debug": "debug",
    "Info": "info",
    "Warn": "warning",
    "Error": "error",
    "Critical": "error",
}

CACHE_ADAPTERS = ("memory", "redis", "memcache")
SESSION_PROVIDERS = ("memory", "file", "redis", "mysql")
CONN_PROTOCOLS = ("tcp", "unix", "udp")
PERSISTENCE_LOG_FILE = "sql.log"

_HEADERS = HeaderRegistry()


def _source_of(settings: Settings, source: ConfigSource | None) -> ConfigSource:
    if source is not None:
        return source
    return settings.source if settings.source is not None else ConfigSource()


def _compile_patterns(sec: Section, key: str) -> list[str]:
    patterns = sec.get_list(key, " ")
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"Invalid regular expression '{pattern}': {e}", section=sec.name, key=key) from e
    return patterns


def new_service(source: ConfigSource, settings: Settings) -> Settings:
    sec = source.section("service")
    disable_registration = sec.get_bool("DISABLE_REGISTRATION")
    external_only = sec.get_bool("ALLOW_ONLY_EXTERNAL_REGISTRATION")
    timetracking = sec.get_bool("ENABLE_TIMETRACKING", True)

    openid = source.section("openid")
    signin = openid.get_bool("ENABLE_OPENID_SIGNIN", not settings.security.install_lock)

    service = ServiceSettings(
        active_code_live_minutes=sec.get_int("ACTIVE_CODE_LIVE_MINUTES", 180),
        reset_passwd_code_live_minutes=sec.get_int("RESET_PASSWD_CODE_LIVE_MINUTES", 180),
        disable_registration=disable_registration,
        allow_only_external_registration=external_only,
        email_domain_whitelist=sec.get_list("EMAIL_DOMAIN_WHITELIST"),
        show_registration_button=sec.get_bool(
            "SHOW_REGISTRATION_BUTTON", not (disable_registration or external_only)
        ),
        require_signin_view=sec.get_bool("REQUIRE_SIGNIN_VIEW"),
        enable_reverse_proxy_authentication=sec.get_bool("ENABLE_REVERSE_PROXY_AUTHENTICATION"),
        enable_reverse_proxy_auto_registration=sec.get_bool("ENABLE_REVERSE_PROXY_AUTO_REGISTRATION"),
        enable_reverse_proxy_email=sec.get_bool("ENABLE_REVERSE_PROXY_EMAIL"),
        enable_captcha=sec.get_bool("ENABLE_CAPTCHA"),
        captcha_type=sec.get_str("CAPTCHA_TYPE", "image"),
        recaptcha_secret=sec.get_str("RECAPTCHA_SECRET"),
        recaptcha_sitekey=sec.get_str("RECAPTCHA_SITEKEY"),
        default_keep_email_private=sec.get_bool("DEFAULT_KEEP_EMAIL_PRIVATE"),
        default_allow_create_organization=sec.get_bool("DEFAULT_ALLOW_CREATE_ORGANIZATION", True),
        enable_timetracking=timetracking,
        default_enable_timetracking=timetracking and sec.get_bool("DEFAULT_ENABLE_TIMETRACKING", True),
        default_enable_dependencies=sec.get_bool("DEFAULT_ENABLE_DEPENDENCIES", True),
        default_allow_only_contributors_to_track_time=sec.get_bool(
            "DEFAULT_ALLOW_ONLY_CONTRIBUTORS_TO_TRACK_TIME", True
        ),
        no_reply_address=sec.get_str("NO_REPLY_ADDRESS", "noreply.example.org"),
        enable_user_heatmap=sec.get_bool("ENABLE_USER_HEATMAP", True),
        enable_openid_signin=signin,
        enable_openid_signup=openid.get_bool("ENABLE_OPENID_SIGNUP", not disable_registration and signin),
        openid_whitelist=_compile_patterns(openid, "WHITELISTED_URIS"),
        openid_blacklist=_compile_patterns(openid, "BLACKLISTED_URIS"),
    )
    return settings.model_copy(update={"service": service})


def _log_modes(source: ConfigSource) -> list[str]:
    return [m.strip() for m in source.section("log").get_str("MODE", "console").split(",")]


def _level_name(source: ConfigSource, mode: str, default: str) -> str:
    name = source.section(f"log.{mode}").get_str("LEVEL", default)
    if name not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level: {name}", section=f"log.{mode}", key="LEVEL")
    return name


def _file_sink_config(sec: Section, level: int, filename: str) -> dict:
    return {
        "level": level,
        "filename": filename,
        "rotate": sec.get_bool("LOG_ROTATE", True),
        "maxsize": 1 << sec.get_int("MAX_SIZE_SHIFT", 28),
        "daily": sec.get_bool("DAILY_ROTATE", True),
        "maxdays": sec.get_int("MAX_DAYS", 7),
    }


def _make_log_dir(filename: str) -> None:
    parent = os.path.dirname(filename)
    if not parent:
        return
    try:
        Path(parent).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Failed to create log directory '{parent}': {e}") from e


def _sink_config(source: ConfigSource, mode: str, level: int, default_file: str, smtp_receivers: bool) -> dict:
    sec = source.section(f"log.{mode}")
    if mode == "console":
        return {"level": level}
    if mode == "file":
        filename = sec.get_str("FILE_NAME", default_file)
        _make_log_dir(filename)
        return _file_sink_config(sec, level, filename)
    if mode == "conn":
        return {
            "level": level,
            "reconnectOnMsg": sec.get_bool("RECONNECT_ON_MSG"),
            "reconnect": sec.get_bool("RECONNECT"),
            "net": sec.get_choice("PROTOCOL", "tcp", CONN_PROTOCOLS),
            "addr": sec.get_str("ADDR", ":7020"),
        }
    if mode == "smtp":
        receivers = sec.get_str("RECEIVERS", "example@example.com")
        return {
            "level": level,
            "username": sec.get_str("USER", "example@example.com"),
            "password": sec.get_str("PASSWD", "******"),
            "host": sec.get_str("HOST", "127.0.0.1:25"),
            "sendTos": [r.strip() for r in receivers.split(",")] if smtp_receivers else receivers,
            "subject": sec.get_str("SUBJECT", "Diagnostic message from serve"),
        }
    if mode == "database":
        return {"level": level, "driver": sec.get_str("DRIVER"), "conn": sec.get_str("CONN")}
    return {"level": level}


def new_log_service(source: ConfigSource, settings: Settings) -> Settings:
    """One sink per entry of log.MODE, each with its own level and parameters."""
    logger.info("starting", version=__version__)
    log_sec = source.section("log")
    default_level = log_sec.get_str("LEVEL", "Info")
    modes = _log_modes(source)
    root_path = settings.log.root_path

    sinks = []
    for mode in modes:
        level_name = _level_name(source, mode, default_level)
        level = LOG_LEVELS[level_name]
        config = _sink_config(source, mode, level, f"{root_path}/forge.log", smtp_receivers=True)
        sinks.append(LogSink(mode=mode, level_name=level_name, level=level, config=config))
        logger.info("log_mode", mode=mode.title(), level=level_name)

    log = settings.log.model_copy(
        update={
            "level": default_level,
            "modes": modes,
            "buffer_len": log_sec.get_int("BUFFER_LEN", 10000),
            "sinks": sinks,
        }
    )
    return settings.model_copy(update={"log": log})


def new_persistence_log_service(source: ConfigSource, settings: Settings, disable_console: bool = False) -> Settings:
    """Sinks for the persistence-layer logger; file output always goes to sql.log."""
    default_level = source.section("log").get_str("LEVEL", "Info")
    root_path = settings.log.root_path

    sinks = []
    level = settings.log.persistence_level
    for mode in _log_modes(source):
        if disable_console and mode == "console":
            continue
        level_name = _level_name(source, mode, default_level)
        config = _sink_config(
            source, mode, LOG_LEVELS[level_name], f"{root_path}/{PERSISTENCE_LOG_FILE}", smtp_receivers=False
        )
        if mode == "file":
            config["filename"] = f"{os.path.dirname(config['filename']) or '.'}/{PERSISTENCE_LOG_FILE}"
        sinks.append(LogSink(mode=mode, level_name=level_name, level=LOG_LEVELS[level_name], config=config))
        if not disable_console:
            logger.info("persistence_log_mode", mode=mode.title(), level=level_name)
        level = PERSISTENCE_LEVELS[level_name]

    log = settings.log.model_copy(
        update={
            "persistence_sinks": sinks,
            "persistence_level": level,
            "persistence_discard": not sinks,
        }
    )
    return settings.model_copy(update={"log": log})


def new_cache_service(source: ConfigSource, settings: Settings) -> Settings:
    sec = source.section("cache")
    adapter = sec.get_str("ADAPTER", "memory")
    if adapter not in CACHE_ADAPTERS:
        raise ConfigError(f"Unknown cache adapter: {adapter}", section="cache", key="ADAPTER")
    interval = 60
    conn = ""
    if adapter == "memory":
        interval = sec.get_int("INTERVAL", 60)
    else:
        conn = sec.get_str("HOST").strip('" ')
    cache = CacheSettings(
        adapter=adapter,
        interval=interval,
        conn=conn,
        ttl=sec.get_duration("ITEM_TTL", CacheSettings().ttl),
    )
    logger.info("cache_service_enabled", adapter=adapter)
    return settings.model_copy(update={"cache": cache})


def new_session_service(source: ConfigSource, settings: Settings) -> Settings:
    sec = source.section("session")
    provider = sec.get_choice("PROVIDER", "memory", SESSION_PROVIDERS)
    provider_config = sec.get_str("PROVIDER_CONFIG", f"{settings.server.app_data_path}/sessions").strip('" ')
    if provider == "file" and not os.path.isabs(provider_config):
        provider_config = f"{settings.app.work_path}/{provider_config}"
    session = SessionSettings(
        provider=provider,
        provider_config=provider_config,
        cookie_name=sec.get_str("COOKIE_NAME", "i_like_gitea"),
        cookie_path=settings.server.sub_url,
        secure=sec.get_bool("COOKIE_SECURE"),
        gc_lifetime=sec.get_int("GC_INTERVAL_TIME", 86400),
        max_lifetime=sec.get_int("SESSION_LIFE_TIME", 86400),
    )
    logger.info("session_service_enabled", provider=provider)
    return settings.model_copy(update={"session": session})


def parse_mailbox(value: str) -> tuple[str, str]:
    """Split exactly one RFC 5322 mailbox ("Name <user@host>" or "user@host") into name and address.

    Raises:
        ValueError: the value is not exactly one well-formed address.
    """
    # truncated input such as "user@" can run the parser off the end
    try:
        header = _HEADERS("From", value)
    except (HeaderParseError, IndexError) as e:
        raise ValueError(f"cannot parse address: {e}") from e
    invalid = [d for d in header.defects if isinstance(d, InvalidHeaderDefect)]
    if invalid:
        raise ValueError(str(invalid[0]))
    if len(header.addresses) != 1:
        raise ValueError(f"expected one address, found {len(header.addresses)}")
    address = header.addresses[0]
    if not address.username or not address.domain:
        raise ValueError("no address")
    return address.display_name, address.addr_spec


def new_mail_service(source: ConfigSource, settings: Settings) -> Settings:
    """Mailer group, left as None unless [mailer] ENABLED is true."""
    sec = source.section("mailer")
    if not sec.get_bool("ENABLED"):
        return settings.model_copy(update={"mailer": None})

    user = sec.get_str("USER")
    from_ = sec.get_str("FROM", user)
    send_as_plain_text = sec.get_bool("SEND_AS_PLAIN_TEXT")
    if sec.has_key("ENABLE_HTML_ALTERNATIVE"):
        logger.warning("mailer_enable_html_alternative_deprecated", replacement="SEND_AS_PLAIN_TEXT")
        send_as_plain_text = not sec.get_bool("ENABLE_HTML_ALTERNATIVE")

    try:
        from_name, from_email = parse_mailbox(from_)
    except ValueError as e:
        raise ConfigError(f"Invalid mailer.FROM ({from_}): {e}", section="mailer", key="FROM") from e

    use_sendmail = sec.get_bool("USE_SENDMAIL")
    sendmail_args: list[str] = []
    if use_sendmail:
        try:
            sendmail_args = shlex.split(sec.get_str("SENDMAIL_ARGS"))
        except ValueError as e:
            logger.error("sendmail_args_invalid", error=str(e))

    mailer = MailerSettings(
        queue_length=sec.get_int("SEND_BUFFER_LEN", 100),
        name=sec.get_str("NAME", settings.app.name),
        from_=from_,
        from_name=from_name,
        from_email=from_email,
        send_as_plain_text=send_as_plain_text,
        host=sec.get_str("HOST"),
        user=user,
        passwd=sec.get_str("PASSWD"),
        disable_helo=sec.get_bool("DISABLE_HELO"),
        helo_hostname=sec.get_str("HELO_HOSTNAME"),
        skip_verify=sec.get_bool("SKIP_VERIFY"),
        use_certificate=sec.get_bool("USE_CERTIFICATE"),
        cert_file=sec.get_str("CERT_FILE"),
        key_file=sec.get_str("KEY_FILE"),
        is_tls_enabled=sec.get_bool("IS_TLS_ENABLED"),
        use_sendmail=use_sendmail,
        sendmail_path=sec.get_str("SENDMAIL_PATH", "sendmail"),
        sendmail_args=sendmail_args,
    )
    logger.info("mail_service_enabled")
    return settings.model_copy(update={"mailer": mailer})


def _mail_feature(source: ConfigSource, settings: Settings, key: str, field: str, feature: str) -> Settings:
    if not source.section("service").get_bool(key):
        return settings
    if settings.mailer is None:
        logger.warning("mail_service_not_enabled", feature=feature)
        return settings
    service = settings.service.model_copy(update={field: True})
    logger.info("mail_feature_enabled", feature=feature)
    return settings.model_copy(update={"service": service})


def new_register_mail_service(source: ConfigSource, settings: Settings) -> Settings:
    return _mail_feature(source, settings, "REGISTER_EMAIL_CONFIRM", "register_email_confirm", "register")


def new_notify_mail_service(source: ConfigSource, settings: Settings) -> Settings:
    return _mail_feature(source, settings, "ENABLE_NOTIFY_MAIL", "enable_notify_mail", "notify")


def new_webhook_service(source: ConfigSource, settings: Settings) -> Settings:
    sec = source.section("webhook")
    webhook = WebhookSettings(
        queue_length=sec.get_int("QUEUE_LENGTH", 1000),
        deliver_timeout=sec.get_int("DELIVER_TIMEOUT", 5),
        skip_tls_verify=sec.get_bool("SKIP_TLS_VERIFY"),
        types=list(WEBHOOK_TYPES),
        paging_num=sec.get_int("PAGING_NUM", 10),
    )
    return settings.model_copy(update={"webhook": webhook})


def load_services(settings: Settings, *, source: ConfigSource | None = None) -> Settings:
    """Run every service step in order and return the final snapshot."""
    src = _source_of(settings, source)
    settings = new_service(src, settings)
    settings = new_log_service(src, settings)
    settings = new_persistence_log_service(src, settings, disable_console=False)
    settings = new_cache_service(src, settings)
    settings = new_session_service(src, settings)
    settings = new_mail_service(src, settings)
    settings = new_register_mail_service(src, settings)
    settings = new_notify_mail_service(src, settings)
    settings = new_webhook_service(src, settings)
    settings._source = src
    return settings
