"""Pydantic schemas for the configuration snapshot.

Each group is a frozen model whose field defaults are the built-in defaults and
whose aliases are the INI keys, so a section maps onto a group with
``Group.model_validate(section.to_dict())``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from forgecfg.config.fields import CommaList, Duration, PipeList, SpaceList
from forgecfg.config.timefmt import format_time

Scheme = Literal["http", "https", "fcgi", "unix"]

LANDING_PAGES = {
    "home": "/",
    "explore": "/explore",
    "organizations": "/explore/organizations",
}

DEFAULT_LANGS = [
    "en-US", "zh-CN", "zh-HK", "zh-TW", "de-DE", "fr-FR", "nl-NL", "lv-LV",
    "ru-RU", "uk-UA", "ja-JP", "es-ES", "pt-BR", "pl-PL", "bg-BG", "it-IT",
    "fi-FI", "tr-TR", "cs-CZ", "sr-SP", "sv-SE", "ko-KR",
]
DEFAULT_LANG_NAMES = [
    "English", "简体中文", "繁體中文（香港）", "繁體中文（台灣）", "Deutsch",
    "français", "Nederlands", "latviešu", "русский", "Українська", "日本語",
    "español", "português do Brasil", "polski", "български", "italiano",
    "suomi", "Türkçe", "čeština", "српски", "svenska", "한국어",
]

WEBHOOK_TYPES = ["gitea", "gogs", "slack", "discord", "dingtalk"]


class Group(BaseModel):
    """Base for every configuration group: INI keys are the upper-cased field names."""

    model_config = ConfigDict(
        alias_generator=str.upper,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class AppSettings(Group):
    name: str = "Gitea: Git with a cup of tea"
    path: str = ""
    work_path: str = ""
    data_path: str = "data"
    custom_path: str = "custom"
    custom_conf: str = "custom/conf/app.ini"
    custom_pid: str = ""
    run_user: str = ""
    run_mode: str = "dev"
    prod_mode: bool = False
    is_windows: bool = False
    has_robots_txt: bool = False
    show_footer_branding: bool = False
    show_footer_version: bool = True
    show_footer_template_load_time: bool = True


class ServerSettings(Group):
    protocol: Scheme = "http"
    domain: str = "localhost"
    http_addr: str = "0.0.0.0"
    http_port: str = "3000"
    root_url: str = "http://localhost:3000/"
    sub_url: str = ""
    sub_url_depth: int = 0
    local_url: str = "http://localhost:3000/"
    redirect_other_port: bool = False
    port_to_redirect: str = "80"
    offline_mode: bool = False
    disable_router_log: bool = False
    cert_file: str = ""
    key_file: str = ""
    static_root_path: str = ""
    app_data_path: str = "data"
    enable_gzip: bool = False
    landing_page: str = "/"
    unix_socket_permission: int = 0o666
    enable_pprof: bool = False
    pprof_data_path: str = "data/tmp/pprof"
    enable_letsencrypt: bool = False
    letsencrypt_tos: bool = Field(False, alias="LETSENCRYPT_ACCEPTTOS")
    letsencrypt_directory: str = "https"
    letsencrypt_email: str = ""


class SSHSettings(Group):
    disabled: bool = Field(False, alias="DISABLE_SSH")
    start_builtin_server: bool = Field(False, alias="START_SSH_SERVER")
    builtin_server_user: str = Field("", alias="BUILTIN_SSH_SERVER_USER")
    domain: str = Field("", alias="SSH_DOMAIN")
    port: int = Field(22, alias="SSH_PORT")
    listen_host: str = Field("", alias="SSH_LISTEN_HOST")
    listen_port: int = Field(22, alias="SSH_LISTEN_PORT")
    root_path: str = Field("", alias="SSH_ROOT_PATH")
    server_ciphers: CommaList = Field(
        default_factory=lambda: [
            "aes128-ctr", "aes192-ctr", "aes256-ctr",
            "aes128-gcm@openssh.com", "arcfour256", "arcfour128",
        ],
        alias="SSH_SERVER_CIPHERS",
    )
    server_key_exchanges: CommaList = Field(
        default_factory=lambda: [
            "diffie-hellman-group1-sha1", "diffie-hellman-group14-sha1",
            "ecdh-sha2-nistp256", "ecdh-sha2-nistp384", "ecdh-sha2-nistp521",
            "curve25519-sha256@libssh.org",
        ],
        alias="SSH_SERVER_KEY_EXCHANGES",
    )
    server_macs: CommaList = Field(
        default_factory=lambda: [
            "hmac-sha2-256-etm@openssh.com", "hmac-sha2-256", "hmac-sha1", "hmac-sha1-96",
        ],
        alias="SSH_SERVER_MACS",
    )
    key_test_path: str = Field("", alias="SSH_KEY_TEST_PATH")
    keygen_path: str = Field("ssh-keygen", alias="SSH_KEYGEN_PATH")
    authorized_keys_backup: bool = Field(True, alias="SSH_AUTHORIZED_KEYS_BACKUP")
    minimum_key_size_check: bool = False
    minimum_key_sizes: dict[str, int] = Field(default_factory=dict)
    create_authorized_keys_file: bool = Field(True, alias="SSH_CREATE_AUTHORIZED_KEYS_FILE")
    expose_anonymous: bool = Field(False, alias="SSH_EXPOSE_ANONYMOUS")


class LFSSettings(Group):
    start_server: bool = Field(False, alias="LFS_START_SERVER")
    content_path: str = Field("data/lfs", alias="LFS_CONTENT_PATH")
    jwt_secret_base64: str = Field("", alias="LFS_JWT_SECRET")
    jwt_secret_bytes: bytes = Field(b"", exclude=True)
    http_auth_expiry: Duration = Field(timedelta(minutes=20), alias="LFS_HTTP_AUTH_EXPIRY")


class SecuritySettings(Group):
    install_lock: bool = False
    secret_key: str = "!#@FDEWREWR&*("
    login_remember_days: int = 7
    cookie_username: str = "gitea_awesome"
    cookie_remember_name: str = "gitea_incredible"
    reverse_proxy_authentication_user: str = "X-WEBAUTH-USER"
    reverse_proxy_authentication_email: str = "X-WEBAUTH-EMAIL"
    min_password_length: int = 6
    import_local_paths: bool = False
    disable_git_hooks: bool = False
    internal_token: str = ""


class DatabaseSettings(Group):
    db_type: str = "mysql"
    host: str = "127.0.0.1:3306"
    name: str = "gitea"
    user: str = "root"
    passwd: str = ""
    ssl_mode: str = "disable"
    path: str = "data/gitea.db"
    use_sqlite3: bool = False
    use_mysql: bool = True
    use_mssql: bool = False
    use_postgresql: bool = False
    use_tidb: bool = False
    log_sql: bool = True
    iterate_buffer_size: int = 50
    db_retries: int = 10
    db_retry_backoff: Duration = timedelta(seconds=3)


class RepositoryEditor(Group):
    line_wrap_extensions: CommaList = Field(
        default_factory=lambda: [".txt", ".md", ".markdown", ".mdown", ".mkd", ""]
    )
    previewable_file_modes: CommaList = Field(default_factory=lambda: ["markdown"])


class RepositoryUpload(Group):
    enabled: bool = True
    temp_path: str = "data/tmp/uploads"
    allowed_types: PipeList = Field(default_factory=list)
    file_max_size: int = 3
    max_files: int = 5


class RepositoryLocal(Group):
    local_copy_path: str = "tmp/local-repo"
    local_wiki_path: str = "tmp/local-wiki"


class RepositoryPullRequest(Group):
    work_in_progress_prefixes: CommaList = Field(default_factory=lambda: ["WIP:", "[WIP]"])


class RepositorySettings(Group):
    root: str = ""
    script_type: str = "bash"
    ansi_charset: str = ""
    force_private: bool = False
    default_private: Literal["last", "private", "public"] = "last"
    max_creation_limit: int = -1
    mirror_queue_length: int = 1000
    pull_request_queue_length: int = 1000
    preferred_licenses: CommaList = Field(default_factory=lambda: ["Apache License 2.0", "MIT License"])
    disable_http_git: bool = False
    access_control_allow_origin: str = ""
    use_compat_ssh_uri: bool = False
    editor: RepositoryEditor = Field(default_factory=RepositoryEditor)
    upload: RepositoryUpload = Field(default_factory=RepositoryUpload)
    local: RepositoryLocal = Field(default_factory=RepositoryLocal)
    pull_request: RepositoryPullRequest = Field(default_factory=RepositoryPullRequest)


class AttachmentSettings(Group):
    path: str = "data/attachments"
    allowed_types: str = "image/jpeg,image/png,application/zip,application/gzip"
    max_size: int = 4
    max_files: int = 5
    enabled: bool = True


class TimeSettings(Group):
    format_name: str = "RFC1123"
    format: str = "%a, %d %b %Y %H:%M:%S %Z"

    def render(self, value: datetime) -> str:
        return format_time(value, self.format)


class PictureSettings(Group):
    avatar_upload_path: str = "data/avatars"
    avatar_max_width: int = 4096
    avatar_max_height: int = 3072
    gravatar_source: str = "https://secure.gravatar.com/avatar/"
    disable_gravatar: bool = False
    enable_federated_avatar: bool = True
    libravatar_use_https: bool = True
    libravatar_fallback_host: str = ""


class UIAdmin(Group):
    user_paging_num: int = 50
    repo_paging_num: int = 50
    notice_paging_num: int = 25
    org_paging_num: int = 50


class UIUser(Group):
    repo_paging_num: int = 15


class UIMeta(Group):
    author: str = "Gitea - Git with a cup of tea"
    description: str = "Gitea (Git with a cup of tea) is a painless self-hosted Git service written in Go"
    keywords: str = "go,git,self-hosted,gitea"


class UISettings(Group):
    explore_paging_num: int = 20
    issue_paging_num: int = 10
    repo_search_paging_num: int = 10
    feed_max_commit_num: int = 5
    graph_max_commit_num: int = 100
    code_comment_lines: int = 4
    reaction_max_user_num: int = 10
    theme_color_meta_tag: str = "#6cc644"
    max_display_file_size: int = 8388608
    show_user_email: bool = True
    default_theme: str = "gitea"
    themes: CommaList = Field(default_factory=lambda: ["gitea", "arc-green"])
    admin: UIAdmin = Field(default_factory=UIAdmin)
    user: UIUser = Field(default_factory=UIUser)
    meta: UIMeta = Field(default_factory=UIMeta)


class MarkdownSettings(Group):
    enable_hard_line_break: bool = False
    custom_url_schemes: CommaList = Field(default_factory=list)
    file_extensions: CommaList = Field(default_factory=lambda: [".md", ".markdown", ".mdown", ".mkd"])


class AdminSettings(Group):
    disable_regular_org_creation: bool = False


class CronJob(Group):
    enabled: bool = True
    run_at_start: bool = False
    schedule: str = "@every 24h"


class UpdateMirrorsJob(CronJob):
    schedule: str = "@every 10m"


class RepoHealthCheckJob(CronJob):
    timeout: Duration = timedelta(seconds=60)
    args: SpaceList = Field(default_factory=list)


class CheckRepoStatsJob(CronJob):
    run_at_start: bool = True


class ArchiveCleanupJob(CronJob):
    run_at_start: bool = True
    older_than: Duration = timedelta(hours=24)


class SyncExternalUsersJob(CronJob):
    update_existing: bool = True


class DeletedBranchesCleanupJob(CronJob):
    run_at_start: bool = True
    older_than: Duration = timedelta(hours=24)


class CronSettings(Group):
    update_mirrors: UpdateMirrorsJob = Field(default_factory=UpdateMirrorsJob)
    repo_health_check: RepoHealthCheckJob = Field(default_factory=RepoHealthCheckJob)
    check_repo_stats: CheckRepoStatsJob = Field(default_factory=CheckRepoStatsJob)
    archive_cleanup: ArchiveCleanupJob = Field(default_factory=ArchiveCleanupJob)
    sync_external_users: SyncExternalUsersJob = Field(default_factory=SyncExternalUsersJob)
    deleted_branches_cleanup: DeletedBranchesCleanupJob = Field(default_factory=DeletedBranchesCleanupJob)


class GitTimeout(Group):
    migrate: int = 600
    mirror: int = 300
    clone: int = 300
    pull: int = 300
    gc: int = 60


class GitSettings(Group):
    version: str = ""
    disable_diff_highlight: bool = False
    max_git_diff_lines: int = 1000
    max_git_diff_line_characters: int = 5000
    max_git_diff_files: int = 100
    gc_args: SpaceList = Field(default_factory=list)
    timeout: GitTimeout = Field(default_factory=GitTimeout)
    global_command_args: list[str] = Field(default_factory=list)


class MirrorSettings(Group):
    default_interval: Duration = timedelta(hours=8)
    min_interval: Duration = timedelta(minutes=10)


class APISettings(Group):
    enable_swagger: bool = True
    max_response_items: int = 50


class U2FSettings(Group):
    app_id: str = ""
    trusted_facets: list[str] = Field(default_factory=list)


class MetricsSettings(Group):
    enabled: bool = False
    token: str = ""


class I18nSettings(Group):
    langs: list[str] = Field(default_factory=lambda: list(DEFAULT_LANGS))
    names: list[str] = Field(default_factory=lambda: list(DEFAULT_LANG_NAMES))
    date_langs: dict[str, str] = Field(default_factory=dict)


class MarkupParser(Group):
    """External renderer declared in a [markup.<name>] section."""

    enabled: bool = False
    markup_name: str
    command: str
    file_extensions: list[str]
    is_input_file: bool = False


class ServiceSettings(Group):
    active_code_live_minutes: int = 180
    reset_passwd_code_live_minutes: int = 180
    register_email_confirm: bool = False
    email_domain_whitelist: list[str] = Field(default_factory=list)
    disable_registration: bool = False
    allow_only_external_registration: bool = False
    show_registration_button: bool = True
    require_signin_view: bool = False
    enable_notify_mail: bool = False
    enable_reverse_proxy_authentication: bool = False
    enable_reverse_proxy_auto_registration: bool = False
    enable_reverse_proxy_email: bool = False
    enable_captcha: bool = False
    captcha_type: str = "image"
    recaptcha_secret: str = ""
    recaptcha_sitekey: str = ""
    default_keep_email_private: bool = False
    default_allow_create_organization: bool = True
    enable_timetracking: bool = True
    default_enable_timetracking: bool = False
    default_enable_dependencies: bool = True
    default_allow_only_contributors_to_track_time: bool = True
    no_reply_address: str = "noreply.example.org"
    enable_user_heatmap: bool = True

    enable_openid_signin: bool = True
    enable_openid_signup: bool = True
    openid_whitelist: list[str] = Field(default_factory=list)
    openid_blacklist: list[str] = Field(default_factory=list)


class LogSink(Group):
    """One configured log output: mode, level and the mode-specific payload."""

    mode: str
    level_name: str
    level: int
    config: dict[str, Any] = Field(default_factory=dict)


class LogSettings(Group):
    level: str = "Info"
    root_path: str = "log"
    modes: list[str] = Field(default_factory=lambda: ["console"])
    buffer_len: int = 10000
    sinks: list[LogSink] = Field(default_factory=list)
    persistence_sinks: list[LogSink] = Field(default_factory=list)
    persistence_level: str = "info"
    persistence_discard: bool = False


class CacheSettings(Group):
    adapter: Literal["memory", "redis", "memcache"] = "memory"
    interval: int = 60
    conn: str = ""
    ttl: Duration = timedelta(hours=16)


class SessionSettings(Group):
    provider: Literal["memory", "file", "redis", "mysql"] = "memory"
    provider_config: str = "data/sessions"
    cookie_name: str = "i_like_gitea"
    cookie_path: str = ""
    secure: bool = False
    gc_lifetime: int = 86400
    max_lifetime: int = 86400
    csrf_cookie_name: str = "_csrf"


class MailerSettings(Group):
    queue_length: int = 100
    name: str = ""
    from_: str = Field("", alias="FROM")
    from_name: str = ""
    from_email: str = ""
    send_as_plain_text: bool = False

    host: str = ""
    user: str = ""
    passwd: str = ""
    disable_helo: bool = False
    helo_hostname: str = ""
    skip_verify: bool = False
    use_certificate: bool = False
    cert_file: str = ""
    key_file: str = ""
    is_tls_enabled: bool = False

    use_sendmail: bool = False
    sendmail_path: str = "sendmail"
    sendmail_args: list[str] = Field(default_factory=list)


class WebhookSettings(Group):
    queue_length: int = 1000
    deliver_timeout: int = 5
    skip_tls_verify: bool = False
    types: list[str] = Field(default_factory=lambda: list(WEBHOOK_TYPES))
    paging_num: int = 10


class Settings(Group):
    """Complete configuration snapshot."""

    app: AppSettings = Field(default_factory=AppSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    ssh: SSHSettings = Field(default_factory=SSHSettings)
    lfs: LFSSettings = Field(default_factory=LFSSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    attachment: AttachmentSettings = Field(default_factory=AttachmentSettings)
    time: TimeSettings = Field(default_factory=TimeSettings)
    picture: PictureSettings = Field(default_factory=PictureSettings)
    ui: UISettings = Field(default_factory=UISettings)
    markdown: MarkdownSettings = Field(default_factory=MarkdownSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)
    cron: CronSettings = Field(default_factory=CronSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    mirror: MirrorSettings = Field(default_factory=MirrorSettings)
    api: APISettings = Field(default_factory=APISettings)
    u2f: U2FSettings = Field(default_factory=U2FSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    i18n: I18nSettings = Field(default_factory=I18nSettings)
    markup_parsers: list[MarkupParser] = Field(default_factory=list)

    service: ServiceSettings = Field(default_factory=ServiceSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    mailer: Optional[MailerSettings] = None
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    _source: Any = PrivateAttr(default=None)

    @property
    def source(self) -> Any:
        """The ConfigSource this snapshot was built from (None for a bare Settings())."""
        return self._source

    def date_lang(self, lang: str) -> str:
        """Locale name used by the datetime plugin for lang; "en" when unmapped."""
        return self.i18n.date_langs.get(lang, "en")
