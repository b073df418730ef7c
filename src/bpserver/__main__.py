"""
=============================================================================
COMMAND LINE ENTRY POINT
=============================================================================

    python -m bpserver [options]

Settings come from ServerConfig defaults, then environment variables
(HOST, PORT, HTTPS_PORT, ...), then these flags.

Exit codes:

    0   graceful shutdown (SIGTERM / SIGINT)
    1   invalid configuration, or the plain listener could not bind

=============================================================================
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import ServerConfig
from .errors import BindFailure
from .server import ListenerManager, configure_logging


logger = logging.getLogger("bpserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bpserver",
        description="Hello, World! HTTP/HTTPS service with a security middleware chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bpserver                            # http :3000, https :3443 if ssl/ has certs
  python -m bpserver --no-https                 # plain listener only
  python -m bpserver --host 0.0.0.0             # listen on all interfaces
  python -m bpserver --allow-origin https://app.example.com
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--host", "-H", help="Bind address for both listeners (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, help="Plain HTTP port (default: 3000)")
    parser.add_argument("--https-port", type=int, help="HTTPS port (default: 3443)")

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument(
        "--no-https",
        dest="enable_https",
        action="store_false",
        default=None,
        help="Do not start the encrypted listener",
    )
    parser.add_argument("--key", help="PEM private key (default: ssl/key.pem)")
    parser.add_argument("--cert", help="PEM certificate (default: ssl/cert.pem)")

    # ─────────────────────────────────────────────────────────────────────
    # SECURITY
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument(
        "--allow-origin",
        action="append",
        dest="allowed_origins",
        metavar="ORIGIN",
        help="Allowed CORS origin; repeat for several (replaces the defaults)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # PERFORMANCE / LOGGING
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument(
        "--workers", "-w",
        type=int,
        help="Initial worker threads (default: 4, max will be 2x this)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Access log format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"bpserver {__version__}",
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment-derived config with explicit flags applied on top."""
    config = ServerConfig.from_env()

    overrides = {
        "host": args.host,
        "port": args.port,
        "https_port": args.https_port,
        "enable_https": args.enable_https,
        "key_file": args.key,
        "cert_file": args.cert,
        "allowed_origins": args.allowed_origins,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)

    if args.workers is not None:
        config.min_workers = args.workers
        config.max_workers = args.workers * 2

    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        configure_logging(config.log_level)
        manager = ListenerManager(config)
    except ValueError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        manager.run()
    except BindFailure as e:
        logger.error(f"Startup failed: {e}")
        return 1

    if manager.failure is not None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
