#!/usr/bin/env python3
"""
Command-line interface for acme-certsync.
"""

import argparse
import logging
import signal
import sys

from acme_certsync import secret
from acme_certsync.config import Config
from acme_certsync.core import CertificateManager
from acme_certsync.exceptions import CertSyncError
from acme_certsync.server import ChallengeServer

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Error carrying the process exit code."""

    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(message)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parses command-line arguments.

    Returns:
        argparse.Namespace: The parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="acme-certsync",
        description="Automate creation, renewal and distribution of TLS certificates using ACME",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a seal key for the stored account key
  %(prog)s newkey

  # Serve HTTP-01 challenges (run behind the proxy's port 80)
  %(prog)s listen 0.0.0.0:8080

  # One certificate for example.com with www and api as alternative names
  %(prog)s --email ops@example.com --accept-tos certs add example.com www.example.com api.example.com

  # Renew hourly whatever expires within a week, pushing to vulcand
  %(prog)s --vulcand http://localhost:8182 certs watch

Settings can also be given as ACME_CERTSYNC_* environment variables.
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--email", help="The contact email address of the registrant")
    parser.add_argument(
        "--accept-tos",
        dest="accept_tos",
        action="store_true",
        default=None,
        help="Accept the terms of the ACME service",
    )
    parser.add_argument("--acme-directory", dest="directory_url", help="ACME directory URL")
    parser.add_argument(
        "--production",
        action="store_true",
        help="Use the Let's Encrypt production directory (default: staging)",
    )
    parser.add_argument("--seal-key", dest="seal_key", help="Key used to encrypt secret values")
    parser.add_argument("--store-path", dest="store_path", help="Directory holding the store")
    parser.add_argument("--store-prefix", dest="store_prefix", help="Base path for values in the store")
    parser.add_argument("--vulcand", help="A vulcand API endpoint to sync with")
    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        default=None,
        help="Read from the external system but only log writes",
    )

    commands = parser.add_subparsers(dest="command", metavar="command", required=True)

    commands.add_parser("newkey", help="Create a new value suitable for passing as --seal-key")

    authorize = commands.add_parser("authorize", help="Authorize a domain under your control")
    authorize.add_argument("domain")

    begin = commands.add_parser(
        "authorize-begin", help="Begin authorization on a domain by requesting a challenge"
    )
    begin.add_argument("domain")

    complete = commands.add_parser(
        "authorize-complete", help="Complete a challenge started with authorize-begin"
    )
    complete.add_argument("uri", help="Challenge URI printed by authorize-begin")

    certs = commands.add_parser("certificates", aliases=["certs"], help="Manage ACME certificates")
    certs_commands = certs.add_subparsers(dest="certs_command", metavar="command", required=True)

    add = certs_commands.add_parser("add", help="Create certificates for the given domains")
    add.add_argument("domains", nargs="+", help="Domain names, grouped by registrable domain")
    add.add_argument("--san", action="append", default=[], help="Additional name (repeatable)")

    renew = certs_commands.add_parser("renew", help="Renew certificates that will expire soon")
    renew.add_argument("--before", type=int, help="Renew if expiring within this many seconds")

    watch = certs_commands.add_parser(
        "watch", help="Periodically renew the certificates that will expire soon"
    )
    watch.add_argument("--period", type=int, help="Seconds between checks")
    watch.add_argument("--before", type=int, help="Renew if expiring within this many seconds")

    certs_commands.add_parser("list", help="List stored certificates")
    certs_commands.add_parser("sync", help="Push stored certificates to the external system")

    listen = commands.add_parser("listen", help="Listen for and solve ACME challenges")
    listen.add_argument("interface", nargs="?", help="host:port to listen on")
    listen.add_argument("--path-prefix", dest="path_prefix", help="URI path prefix of ACME challenges")

    return parser.parse_args(argv)


def configure_logging(verbose: bool, level: str = "INFO") -> None:
    """
    Configures the logging settings based on the verbosity level.
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )


def build_config(args: argparse.Namespace) -> Config:
    """Environment configuration with command-line flags applied on top."""
    config = Config.from_env()

    overrides = (
        "email", "accept_tos", "directory_url", "seal_key", "store_path", "store_prefix", "vulcand", "dry_run",
    )
    for name in overrides:
        value = getattr(args, name, None)
        if value is not None:
            setattr(config, name, value)

    if args.production:
        config.staging = False
    if getattr(args, "path_prefix", None):
        config.path_prefix = args.path_prefix
    if getattr(args, "interface", None):
        config.listen = args.interface
    if getattr(args, "period", None) is not None:
        config.renew_period = args.period
    if getattr(args, "before", None) is not None:
        config.renew_before = args.before

    return config


def run_listen(config: Config) -> int:
    manager = CertificateManager(config)
    try:
        srv = ChallengeServer(manager.store, config.listen, config.path_prefix)
    except (OSError, ValueError) as e:
        raise CommandError(255, f"can't create server: {e}") from e

    srv.listen()
    return 0


def run_certificates(args: argparse.Namespace, manager: CertificateManager) -> int:
    command = args.certs_command

    if command == "add":
        certs = manager.new_certificate([*args.domains, *args.san])
        for cert in certs:
            print(f"Created certificate for {cert.domain}, expires {cert.expires.isoformat()}")
        return 0

    if command == "renew":
        renewed = manager.renew_expiring()
        print(f"Renewed {len(renewed)} certificate(s)")
        return 0

    if command == "watch":
        signal.signal(signal.SIGTERM, lambda signum, frame: manager.stop())
        manager.renew_loop()
        return 0

    if command == "list":
        for cert in manager.certificates():
            sans = ", ".join(sorted(cert.alternative_names)) or "-"
            print(f"{cert.domain}\texpires {cert.expires.isoformat()}\tsans: {sans}")
        return 0

    if command == "sync":
        pushed = manager.sync()
        print(f"Updated {len(pushed)} host(s)")
        return 0

    raise CommandError(2, f"unknown command: {command}")


def run(args: argparse.Namespace, config: Config) -> int:
    if args.command == "newkey":
        print(f"New seal key: {secret.new_key_string()}")
        return 0

    if args.command == "listen":
        return run_listen(config)

    with CertificateManager(config) as manager:
        if args.command == "authorize":
            manager.authorize(args.domain)
            return 0

        if args.command == "authorize-begin":
            challenge = manager.begin_authorize(args.domain)
            if challenge is None:
                print(f"Domain {args.domain} is already authorized")
            else:
                print(
                    f"Challenge for domain {args.domain}\n"
                    f"\tURI = {challenge.uri!r}\n"
                    f"\tPath = {challenge.path!r}\n"
                    f"\tResponse = {challenge.response!r}"
                )
            return 0

        if args.command == "authorize-complete":
            manager.complete_authorize(args.uri)
            return 0

        return run_certificates(args, manager)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        int: Exit code.
    """
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as e:
        configure_logging(args.verbose)
        logger.error(str(e))
        return 255

    configure_logging(args.verbose, config.log_level)

    try:
        return run(args, config)
    except CommandError as e:
        logger.error(str(e))
        return e.code
    except (CertSyncError, ValueError) as e:
        logger.error(str(e))
        return 255
    except KeyboardInterrupt:
        logger.warning("Operation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
