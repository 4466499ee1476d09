"""Command-line entry point for formgate."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from formgate.core import (
    AppSettings,
    ConfigurationError,
    configure_logging,
    load_app_settings,
)
from formgate.storage import FileRateCounterStore

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Secure form-submission processor")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to the configuration file (FORMGATE_* keys).",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="check-config",
        choices=["check-config", "serve", "prune-rates"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind address for serve (defaults to the configured server host).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Bind port for serve (defaults to the configured server port).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return the exit status."""
    command = args.command
    if command == "check-config":
        _print_summary(settings)
    elif command == "prune-rates":
        anti_abuse = settings.anti_abuse
        store = FileRateCounterStore(
            anti_abuse.rate_store_dir, anti_abuse.rate_window_seconds
        )
        removed = store.prune()
        print(f"Removed {removed} expired rate counter(s).")
    elif command == "serve":
        _serve(args, settings)
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_app_settings(args.env_file)
    except ConfigurationError as exc:
        print(f"Configuration error ({exc.code}): {exc.detail}", file=sys.stderr)
        return 2
    configure_logging(settings.logging)
    return execute(args, settings)


def _print_summary(settings: AppSettings) -> None:
    identity = settings.identity
    transport = settings.transport
    anti_abuse = settings.anti_abuse
    print("Configuration OK.")
    print(f"Site: {identity.site_name}")
    print(f"Recipients: {', '.join(identity.to)}")
    if identity.cc:
        print(f"Cc: {', '.join(identity.cc)}")
    if identity.bcc:
        print(f"Bcc: {len(identity.bcc)} hidden recipient(s)")
    api_state = "enabled" if transport.api_token else "no token"
    print(f"Preferred transport: {transport.preferred} (API {api_state})")
    print(
        f"SMTP fallback: {transport.smtp_host or 'not configured'}"
        f":{transport.smtp_port} ({transport.encryption})"
    )
    print(
        f"Rate limit: {anti_abuse.rate_max} per {anti_abuse.rate_window_seconds}s"
    )
    print(f"CAPTCHA provider: {anti_abuse.captcha_provider}")
    print(f"Audit log: {settings.logging.audit_path}")


def _serve(args: argparse.Namespace, settings: AppSettings) -> None:
    """Run the HTTP server; SIGHUP reloads configuration on the next request."""
    import uvicorn  # pylint: disable=import-outside-toplevel

    from formgate.web import create_app  # pylint: disable=import-outside-toplevel

    def _reload(_signum: int, _frame: object) -> None:
        LOGGER.info("SIGHUP received, configuration will be reloaded")
        load_app_settings.cache_clear()

    signal.signal(signal.SIGHUP, _reload)
    app = create_app(env_file=args.env_file)
    uvicorn.run(
        app,
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        proxy_headers=True,
        log_config=None,
    )


if __name__ == "__main__":
    sys.exit(main())
