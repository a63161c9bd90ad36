"""
=============================================================================
BFTP CLI ENTRY POINT
=============================================================================

    # Serve ./public on the default port (64222)
    python -m bftp serve --root ./public

    # Listen on all interfaces, custom port
    python -m bftp serve --root /srv/bftp --host 0.0.0.0 --port 7000

    # Fetch a file
    python -m bftp get README.md --port 7000 --output README.md

Settings not given on the command line come from BFTP_* environment
variables (see ServerConfig.from_env), then from the defaults.

=============================================================================
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .client import BFTPClient, RemoteError
from .config import ServerConfig
from .core import BindError
from .protocol.frame import ProtocolError
from .server import BFTPServer


def cmd_serve(args: argparse.Namespace) -> int:
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.root is not None:
        config.root_dir = args.root
    if args.max_file_size is not None:
        config.max_file_size = args.max_file_size
    if args.max_request_size is not None:
        config.max_request_size = args.max_request_size
    if args.poll_interval is not None:
        config.poll_interval = args.poll_interval
    if args.log_level is not None:
        config.log_level = args.log_level

    try:
        server = BFTPServer(config)
        server.start()
    except BindError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    server.run()
    server.shutdown(wait=True, timeout=args.drain_timeout)
    return 0


def cmd_get(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=getattr(logging, args.log_level or "WARNING"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        with BFTPClient(args.host, args.port, timeout=args.timeout) as client:
            data = client.get(args.path)
            client.finish()
    except RemoteError as e:
        print(f"Server error: {e.reason}", file=sys.stderr)
        return 1
    except (OSError, ProtocolError) as e:
        print(f"Transfer failed: {e}", file=sys.stderr)
        return 1

    if args.output:
        with open(args.output, "wb") as f:
            f.write(data)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bftp",
        description="Basic File Transfer Protocol server and client",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"bftp {__version__}",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_common(p: argparse.ArgumentParser, default_host: Optional[str]):
        p.add_argument("--host", "-H", default=default_host, help="Server host")
        p.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 64222)")
        p.add_argument(
            "--log-level", "-l",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            default=None,
            help="Logging level",
        )

    # ─────────────────────────────────────────────────────────────────────
    # SERVE
    # ─────────────────────────────────────────────────────────────────────

    serve = sub.add_parser("serve", help="Run a BFTP server")
    add_common(serve, default_host=None)
    serve.add_argument("--root", "-r", default=None, help="Directory to serve files from")
    serve.add_argument(
        "--max-file-size", type=int, default=None,
        help="Largest file to serve, in bytes (default: 2 GiB)",
    )
    serve.add_argument(
        "--max-request-size", type=int, default=None,
        help="Largest incoming frame, in bytes (default: 65536)",
    )
    serve.add_argument(
        "--poll-interval", type=float, default=None,
        help="Seconds between close-request checks on idle connections",
    )
    serve.add_argument(
        "--drain-timeout", type=float, default=10.0,
        help="Seconds to wait for clients to finish after shutdown (default: 10)",
    )
    serve.set_defaults(func=cmd_serve)

    # ─────────────────────────────────────────────────────────────────────
    # GET
    # ─────────────────────────────────────────────────────────────────────

    get = sub.add_parser("get", help="Fetch one file from a BFTP server")
    add_common(get, default_host="127.0.0.1")
    get.add_argument("path", help="Path of the file, relative to the server root")
    get.add_argument("--output", "-o", default=None, help="Write to this file instead of stdout")
    get.add_argument("--timeout", type=float, default=30.0, help="Socket timeout in seconds")
    get.set_defaults(func=cmd_get)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.cmd == "get" and args.port is None:
        args.port = ServerConfig().port
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
