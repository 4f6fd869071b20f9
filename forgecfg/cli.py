"""
Single entry point: show, check, date-lang, generate-secret, version.
"""

import argparse
import json
import logging
import sys
from typing import Any

import structlog
import yaml

from forgecfg import __version__

SECRET_MASK = "******"

# (group, field) pairs never printed unless --show-secrets
SECRET_FIELDS = [
    ("security", "secret_key"),
    ("security", "internal_token"),
    ("lfs", "jwt_secret_base64"),
    ("database", "passwd"),
    ("mailer", "passwd"),
    ("metrics", "token"),
    ("service", "recaptcha_secret"),
]


def configure_logging(level: str = "info") -> None:
    """Route structlog output to stderr, dropping events below level."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _load(args: argparse.Namespace):
    from forgecfg.config.loader import load_settings

    return load_settings(custom_conf=args.config, custom_pid=args.pid)


def mask_secrets(data: dict[str, Any]) -> dict[str, Any]:
    for group, field in SECRET_FIELDS:
        values = data.get(group)
        if isinstance(values, dict) and values.get(field):
            values[field] = SECRET_MASK
    return data


def cmd_show(args: argparse.Namespace) -> int:
    """Load everything and print the snapshot as YAML or JSON."""
    settings = _load(args)
    data = settings.model_dump(mode="json")
    if not args.show_secrets:
        data = mask_secrets(data)
    if args.section:
        if args.section not in data:
            print(f"error: unknown section '{args.section}'", file=sys.stderr)
            return 1
        data = {args.section: data[args.section]}
    if args.format == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        print(yaml.dump(data, allow_unicode=True, default_flow_style=False, sort_keys=False), end="")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Load everything; print ok when the configuration is usable."""
    _load(args)
    print("ok")
    return 0


def cmd_date_lang(args: argparse.Namespace) -> int:
    """Print the datetime-plugin locale for a UI language."""
    print(_load(args).date_lang(args.lang))
    return 0


def cmd_generate_secret(args: argparse.Namespace) -> int:
    """Print a freshly generated secret (not written anywhere)."""
    from forgecfg.config import generate

    if args.kind == "lfs":
        print(generate.new_lfs_jwt_secret())
    else:
        print(generate.new_internal_token())
    return 0


def cmd_version(_: argparse.Namespace) -> int:
    """Print version."""
    print(__version__)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="forgecfg",
        description="Forge configuration: show, check, date-lang, generate-secret, version.",
    )
    parser.add_argument("--config", default=None, help="Custom config file (default: <custom>/conf/app.ini)")
    parser.add_argument("--pid", default=None, help="Write the process id to this file")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Minimum level of log events printed to stderr",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # show
    p_show = sub.add_parser("show", help="Print the loaded configuration")
    p_show.add_argument("--format", choices=["yaml", "json"], default="yaml", help="Output format (default: yaml)")
    p_show.add_argument("--section", default=None, help="Only print this group (e.g. server, lfs)")
    p_show.add_argument("--show-secrets", action="store_true", help="Print secrets instead of a mask")
    p_show.set_defaults(func=cmd_show)

    # check
    p_check = sub.add_parser("check", help="Load the configuration and report errors")
    p_check.set_defaults(func=cmd_check)

    # date-lang
    p_date = sub.add_parser("date-lang", help="Print the date locale for a language")
    p_date.add_argument("lang", help="Language code, e.g. zh-CN")
    p_date.set_defaults(func=cmd_date_lang)

    # generate-secret
    p_gen = sub.add_parser("generate-secret", help="Print a new secret")
    p_gen.add_argument("kind", choices=["lfs", "internal"], help="lfs: LFS JWT secret; internal: internal token")
    p_gen.set_defaults(func=cmd_generate_secret)

    # version
    p_version = sub.add_parser("version", help="Print version")
    p_version.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    from forgecfg.config.errors import ConfigError

    try:
        return args.func(args)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
