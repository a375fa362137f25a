"""
=============================================================================
SSISERVE CLI ENTRY POINT
=============================================================================

    ssiserve [directory] [-l listen_uri [-l ...]] [options]
    python -m ssiserve ...

=============================================================================
USAGE
=============================================================================

    # Current directory on port 5000 (or $PORT)
    ssiserve

    # A build folder, single-page app fallback
    ssiserve dist --single

    # Several endpoints at once
    ssiserve -l 8080 -l tcp://127.0.0.1:9000 -l unix:/tmp/site.sock

    # Expand <!--#include virtual="..." --> from a remote origin
    ssiserve --ssi https://fragments.example.com --charset iso-8859-1

=============================================================================
STARTUP ORDER
=============================================================================

    1. parse arguments              (bad endpoint → exit 1)
    2. update check                 (unless NO_UPDATE_CHECK; never fatal)
    3. load config file             (unreadable / invalid → exit 1)
    4. CLI overrides: --ssi, --single, --symlinks, --charset
    5. bind every endpoint          (BindError → "Failed to serve", exit 1)
    6. wait for SIGINT / SIGTERM

=============================================================================
"""

import argparse
import logging
import os
import re
import sys
from typing import List, Optional, Sequence

import httpx

from . import __version__
from .config import Rewrite, ServeConfig, default_port, update_check_enabled
from .core.endpoint import EndpointError, EndpointSpec, parse_endpoint
from .listener import BindError
from .loader import ConfigError, load_config
from .server import ServeApp, setup_logging
from .transform.charset import normalize_charset
from .update_check import check_for_update


logger = logging.getLogger("ssiserve")

# Loose URL shape check for --ssi; http(s) or ftp, a host, an optional rest
SSI_URL_PATTERN = re.compile(
    r"(http|ftp|https)://[\w-]+(\.[\w-]+)*([\w.,@?^=%&:/~+#-]*[\w@?^=%&/~+#-])?"
)


class CLIArgumentParser(argparse.ArgumentParser):
    """argparse, but usage errors exit with status 1 like every other error."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def listen_uri(value: str) -> EndpointSpec:
    try:
        return parse_endpoint(value)
    except EndpointError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = CLIArgumentParser(
        prog="ssiserve",
        description="Static file serving and directory listing, with server-side includes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Endpoints:
  8080                       port on all interfaces (moves if taken)
  tcp://hostname:1234        host and port, exactly
  unix:/path/to/socket.sock  UNIX domain socket
  pipe:\\\\.\\pipe\\PipeName     Windows named pipe

Environment:
  PORT               default port (5000)
  NO_UPDATE_CHECK    skip the update check
  SERVE_ENV          "production" disables the startup banner
        """,
    )

    parser.add_argument("directory", nargs="*", help="Directory to serve (default: current directory)")

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-l", "--listen", "-p",
        dest="listen",
        action="append",
        type=listen_uri,
        metavar="LISTEN_URI",
        help="Endpoint to listen on; repeat for several (-p is a deprecated alias)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # SERVING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("-s", "--single", action="store_true",
                        help="Rewrite all not-found requests to index.html")
    parser.add_argument("-c", "--config", metavar="PATH",
                        help="Config file to use instead of serve.json")
    parser.add_argument("--public", metavar="PATH",
                        help="Directory to serve, relative to the served directory")
    parser.add_argument("-S", "--symlinks", action="store_true",
                        help="Resolve symlinks instead of answering 404")
    parser.add_argument("--charset", metavar="NAME",
                        help="Charset for html/htm/shtml/css responses instead of detecting it")
    parser.add_argument("--ssi", metavar="URL",
                        help="Base URL for <!--#include virtual=... --> directives")

    # ─────────────────────────────────────────────────────────────────────
    # PRESENTATION
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("-d", "--debug", action="store_true", help="Show debugging information")
    parser.add_argument("-n", "--no-clipboard", action="store_true",
                        help="Do not copy the local address to the clipboard")
    parser.add_argument("-u", "--no-compression", action="store_true",
                        help="Do not gzip responses")
    parser.add_argument("-v", "--version", action="version", version=__version__)

    return parser


def apply_cli_overrides(config: ServeConfig, args: argparse.Namespace) -> ServeConfig:
    """Layer flags over the file config, in the order the flags are documented."""
    if args.ssi:
        if SSI_URL_PATTERN.search(args.ssi):
            config.ssi = args.ssi
        else:
            logger.error("Please provide url for SSI")
            config.ssi = None

    if args.single:
        config.rewrites = [Rewrite(source="**", destination="/index.html")] + list(config.rewrites)

    if args.symlinks:
        config.symlinks = True

    if args.charset:
        config.charset = args.charset

    config.clipboard = not args.no_clipboard
    config.compress = not args.no_compression
    config.log_level = "DEBUG" if args.debug else "INFO"
    return config


def resolve_endpoints(args: argparse.Namespace, config: ServeConfig) -> List[EndpointSpec]:
    """
    --listen, else the config file's `listen`, else $PORT / 5000.

    Raises:
        EndpointError: A config file endpoint is malformed.
        ValueError: PORT is not a number.
    """
    if args.listen:
        return list(args.listen)
    if config.listen:
        return [parse_endpoint(value) for value in config.listen]
    return [parse_endpoint(str(default_port()))]


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.debug else "INFO")

    if len(args.directory) > 1:
        logger.error("Please provide one path argument at maximum")
        return 1

    if update_check_enabled():
        with httpx.Client() as client:
            check_for_update(client, debug=args.debug)

    cwd = os.getcwd()
    entry = os.path.abspath(args.directory[0]) if args.directory else cwd

    try:
        config = load_config(cwd, entry, config_path=args.config, public=args.public)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    config = apply_cli_overrides(config, args)

    if config.charset:
        try:
            normalize_charset(config.charset)
        except LookupError:
            logger.error(f"Unknown charset: {config.charset}")
            return 1

    try:
        endpoints = resolve_endpoints(args, config)
    except ValueError as e:
        logger.error(str(e))
        return 1

    try:
        app = ServeApp(config)
    except ValueError as e:
        logger.error(str(e))
        return 1

    try:
        app.start(endpoints)
    except BindError as e:
        logger.error(f"Failed to serve: {e}")
        app.close()
        return 1

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
