"""certwarden command-line entry point.

Usage::

    certwarden -c /etc/certwarden/config.yaml
    certwarden -c config.yaml --validate-only
    certwarden -c config.yaml serve --dev
    certwarden -c config.yaml check --force-all
    certwarden -c config.yaml list
    python -m certwarden -c config.yaml
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _get_version() -> str:
    from certwarden import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certwarden",
        description="certwarden: certificate lifecycle manager",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API and background services")
    serve_parser.add_argument("--dev", action="store_true", default=False, dest="dev")

    check_parser = subparsers.add_parser("check", help="Run one renewal pass and print the result")
    check_parser.add_argument(
        "--force-all",
        action="store_true",
        default=False,
        dest="force_all",
        help="Renew every certificate regardless of expiry window.",
    )

    subparsers.add_parser("list", help="Print the certificate store")
    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"certwarden: error: {message}", file=sys.stderr)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # Basic stderr logging until the config is loaded
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    from certwarden.config import CertwardenConfig, ConfigValidationError  # noqa: PLC0415

    try:
        config = CertwardenConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)

    from certwarden.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("certwarden").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    command = args.command or "serve"
    if command == "check":
        sys.exit(_run_check(config, args))
    elif command == "list":
        sys.exit(_run_list(config))
    else:
        _print_settings_summary(config)
        _run_serve(config, getattr(args, "dev", False))


def _run_check(config, args) -> int:
    from certwarden.app.context import Container  # noqa: PLC0415

    container = Container(config.settings)
    try:
        result = container.scheduler.check_for_renewals(force_all=args.force_all)
    finally:
        container.hook_registry.shutdown()
    _print_json(result)
    return 0 if result["success"] else 2


def _run_list(config) -> int:
    from certwarden.app.context import Container  # noqa: PLC0415

    container = Container(config.settings)
    try:
        certs = container.store.load()
    finally:
        container.hook_registry.shutdown()
    _print_json([c.to_dict() for c in certs])
    return 0


def _run_serve(config, dev: bool) -> None:
    from certwarden.app import create_app  # noqa: PLC0415

    server = config.settings.server
    if dev:
        log.info("Starting development server (not for production)")
        app = create_app(config, start_services=True)
        app.extensions["shutdown_coordinator"].register_signals()
        app.run(host=server.bind, port=server.port, debug=False, use_reloader=False, threaded=True)
        return

    from certwarden.server.gunicorn_app import run_gunicorn  # noqa: PLC0415

    run_gunicorn(create_app(config), server)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    lines = [
        f"certwarden {_get_version()}",
        f"  certs_dir:      {s.paths.certs_dir}",
        f"  sidecar:        {s.paths.sidecar_file}",
        f"  archive:        {s.paths.archive_dir}",
        f"  renewal:        {'on' if s.renewal.enabled else 'off'} ({s.renewal.schedule})",
        f"  watcher:        {'on' if s.watcher.enabled else 'off'}",
        f"  hooks:          {len(s.hooks.registered)} registered",
        f"  server:         {s.server.bind}:{s.server.port} ({s.server.threads} threads)",
    ]
    print("\n".join(lines), file=sys.stderr)
