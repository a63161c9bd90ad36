"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the BFTP server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m bftp serve --port 7000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── BFTP_PORT=7000 python -m bftp serve                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SIZE LIMITS
=============================================================================

Two limits protect the server from a hostile or buggy peer:

    max_request_size   Largest frame the server will READ. Requests only
                       carry a path, so this stays small. A peer declaring
                       more is disconnected before anything is allocated.

    max_file_size      Largest file the server will send. A whole file
                       travels in one frame, so it must fit the 4-byte
                       length field, and the resolver and the handler both
                       use this same value.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .protocol.frame import MAX_CONTENT_LENGTH


DEFAULT_PORT = 0xFADE  # 64222


@dataclass
class ServerConfig:
    """
    Configuration for the BFTP server.

    Development:
        ServerConfig(root_dir="./public", log_level="DEBUG")

    Production:
        ServerConfig(
            host="0.0.0.0",
            root_dir="/srv/bftp",
            max_file_size=256 * 1024 * 1024,
        )
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """IP address to bind to. "0.0.0.0" listens on all interfaces."""

    port: int = DEFAULT_PORT
    """Port to listen on. 0 lets the OS pick a free port."""

    backlog: int = 128
    """Maximum number of connections queued by the kernel before accept()."""

    buffer_size: int = 64 * 1024
    """Bytes requested per recv() call."""

    accept_timeout: float = 1.0
    """How often the accept loop wakes up to check for shutdown."""

    poll_interval: float = 0.5
    """
    How often an idle handler wakes up to check whether the server asked
    it to close. Only applies between frames; a frame that has started
    arriving is always read and answered completely.
    """

    send_timeout: Optional[float] = 30.0
    """Timeout for writing one response frame. None = block forever."""

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL LIMITS
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = 64 * 1024
    """Largest content length accepted in an incoming frame."""

    max_file_size: int = 2 * 1024 * 1024 * 1024
    """Largest file served in a single GET response (2 GiB)."""

    # ─────────────────────────────────────────────────────────────────────
    # FILES
    # ─────────────────────────────────────────────────────────────────────

    root_dir: str = "."
    """Sandbox root. GET paths are resolved relative to it and may not leave it."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        BFTP_HOST              Server host (default: 127.0.0.1)
        BFTP_PORT              Server port (default: 64222)
        BFTP_ROOT              Sandbox root directory (default: .)
        BFTP_MAX_REQUEST_SIZE  Largest incoming frame (default: 65536)
        BFTP_MAX_FILE_SIZE     Largest served file (default: 2 GiB)
        BFTP_POLL_INTERVAL     Idle close-request poll in seconds (default: 0.5)
        BFTP_LOG_LEVEL         Logging level (default: INFO)
        """
        defaults = cls()
        return cls(
            host=os.getenv("BFTP_HOST", defaults.host),
            port=int(os.getenv("BFTP_PORT", str(defaults.port))),
            root_dir=os.getenv("BFTP_ROOT", defaults.root_dir),
            max_request_size=int(
                os.getenv("BFTP_MAX_REQUEST_SIZE", str(defaults.max_request_size))
            ),
            max_file_size=int(
                os.getenv("BFTP_MAX_FILE_SIZE", str(defaults.max_file_size))
            ),
            poll_interval=float(
                os.getenv("BFTP_POLL_INTERVAL", str(defaults.poll_interval))
            ),
            log_level=os.getenv("BFTP_LOG_LEVEL", defaults.log_level),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called at server construction so a bad value fails at startup,
        not on the first request.
        """
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.max_request_size < 1:
            raise ValueError("max_request_size must be >= 1")

        if not 0 < self.max_file_size <= MAX_CONTENT_LENGTH:
            raise ValueError(
                f"max_file_size must be between 1 and {MAX_CONTENT_LENGTH} "
                f"(the frame length limit)"
            )

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.accept_timeout <= 0:
            raise ValueError("accept_timeout must be > 0")

        if self.send_timeout is not None and self.send_timeout <= 0:
            raise ValueError("send_timeout must be > 0")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Type-safe configuration with a dataclass
# 2. Environment variable support (BFTP_*)
# 3. Validation at startup (fail-fast)
# 4. One max_file_size shared by the resolver and the response frame
# =============================================================================
