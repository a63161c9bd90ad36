"""
=============================================================================
CLIENT HANDLER
=============================================================================

One ClientHandler runs per accepted connection, on its own thread. It
reads request frames, answers them, and runs the closing handshake.

=============================================================================
STATE MACHINE
=============================================================================

    INITIALIZING ──────► SERVING ──────► CLOSING ──────► TERMINATED
          │                 ▲  │             ▲
          │                 └──┘             │
          │           one request/response   │
          │                                  │
          └──────────────────────────────────┘
                 socket could not be set up

SERVING, one cycle:

    read frame ─┬─ StreamClosed / OSError / FrameTooLarge ──► CLOSING
                │
                └─ classify(opcode)
                     GET          → resolve file, send GET|RSP or GET|ERR
                     PUT          → send PUT|ERR "Unsupported command"
                     FIN          → CLOSING
                     UNSUPPORTED  → send ERR "Unsupported command" → CLOSING

    after the response: close requested? ──► CLOSING

CLOSING:

    peer still connected? ──► send FIN (empty content)
    close socket
    tell the server we're gone (on_terminate)

=============================================================================
CLOSE REQUESTS
=============================================================================

The server asks a handler to stop by calling ``request_close()``. This only
sets a flag. The handler looks at it:

- while idle, waiting for the first byte of the next frame
- after a response has been written

So a request that has started arriving is always answered in full.

=============================================================================
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from ..handlers.files import FileResolver, FileError, FileNotFound, FileTooLarge
from ..protocol.frame import Frame, StreamClosed, FrameTooLarge
from ..protocol.opcodes import (
    Opcode, RequestKind, classify, describe, request_bit, response_opcode,
)
from .connection import Connection


logger = logging.getLogger(__name__)


# Response texts
FILE_NOT_FOUND = "File not found"
READ_ERROR = "Encountered error while reading file"
UNSUPPORTED_COMMAND = "Unsupported command"


def format_size(size: int) -> str:
    """Format a byte count with binary units: 2147483648 → "2GiB"."""
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            break
        size /= 1024
    text = f"{size:.1f}".rstrip("0").rstrip(".")
    return f"{text}{unit}"


def too_large_message(limit: int) -> str:
    return f"Requested file is too large (> ~{format_size(limit)})"


class HandlerState(Enum):
    """Client handler lifecycle states."""
    INITIALIZING = "initializing"
    SERVING = "serving"
    CLOSING = "closing"
    TERMINATED = "terminated"


class ClientHandler:
    """
    Serves one client connection.

    Usage:
        handler = ClientHandler(conn, resolver, on_terminate=server._deregister)
        threading.Thread(target=handler.run).start()

        # later, from any thread
        handler.request_close()
        handler.wait(timeout=5.0)
    """

    def __init__(
        self,
        connection: Connection,
        resolver: FileResolver,
        on_terminate: Optional[Callable[["ClientHandler"], None]] = None,
    ):
        """
        Args:
            connection: The accepted connection. The handler owns it.
            resolver: Resolver for GET requests.
            on_terminate: Called exactly once, from the handler's thread,
                          after the connection is closed.
        """
        self.connection = connection
        self.resolver = resolver
        self.client_id = connection.id
        self.state = HandlerState.INITIALIZING
        self.requests_handled = 0

        self._on_terminate = on_terminate
        self._close_requested = threading.Event()
        self._terminated = threading.Event()

        logger.debug(f"[{self.client_id}] Client handler created")

    # =========================================================================
    # CONTROL (any thread)
    # =========================================================================

    def request_close(self):
        """
        Ask the handler to close gracefully.

        The connection is closed at the next point where no request is in
        progress.
        """
        if not self._close_requested.is_set():
            self._close_requested.set()
            logger.debug(f"[{self.client_id}] Will close after handling current command")

    @property
    def close_requested(self) -> bool:
        return self._close_requested.is_set()

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the handler has terminated. Returns False on timeout."""
        return self._terminated.wait(timeout)

    # =========================================================================
    # MAIN LOOP (handler thread)
    # =========================================================================

    def run(self):
        """Run the state machine to completion."""
        logger.info(f"[{self.client_id}] Handling client connection")

        try:
            try:
                self.connection.open()
            except OSError as e:
                logger.warning(f"[{self.client_id}] Failed to set up connection: {e}")
                # Nothing can be sent on a socket we couldn't configure
                self.connection.peer_closed = True
            else:
                self.state = HandlerState.SERVING
                self._serve()
        except Exception as e:
            # Only this connection is affected
            logger.exception(f"[{self.client_id}] Handler error: {e}")
        finally:
            self._close()

    def _serve(self):
        while True:
            try:
                frame = self.connection.read_frame(interrupted=self._close_requested.is_set)
            except StreamClosed as e:
                logger.debug(f"[{self.client_id}] {e}")
                return
            except FrameTooLarge as e:
                logger.warning(f"[{self.client_id}] {e}")
                return
            except OSError as e:
                logger.warning(f"[{self.client_id}] Read failed: {e}")
                return

            if frame is None:
                # Close requested while idle
                return

            if not self._dispatch(frame):
                return

            self.requests_handled += 1

            if self._close_requested.is_set():
                return

    def _dispatch(self, frame: Frame) -> bool:
        """
        Handle one request frame.

        Returns:
            True to keep serving, False to move to CLOSING.
        """
        kind = classify(frame.opcode)
        logger.debug(
            f"[{self.client_id}] Received {describe(frame.opcode)} "
            f"({len(frame.content)} bytes)"
        )

        if kind is RequestKind.GET:
            return self._handle_get(frame)

        if kind is RequestKind.PUT:
            return self._send(response_opcode(Opcode.PUT, ok=False), UNSUPPORTED_COMMAND)

        if kind is RequestKind.FIN:
            logger.debug(f"[{self.client_id}] Client finished")
            return False

        # Malformed or not a request: answer once, then stop trusting the peer
        logger.warning(
            f"[{self.client_id}] Unsupported command {describe(frame.opcode)}"
        )
        bit = request_bit(frame.opcode)
        opcode = response_opcode(bit, ok=False) if bit else int(Opcode.ERR)
        self._send(opcode, UNSUPPORTED_COMMAND)
        return False

    def _handle_get(self, frame: Frame) -> bool:
        try:
            path = frame.content.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"[{self.client_id}] GET path is not valid UTF-8")
            return self._send(response_opcode(Opcode.GET, ok=False), FILE_NOT_FOUND)

        try:
            content = self.resolver.resolve(path)
        except FileNotFound:
            logger.info(f"[{self.client_id}] GET {path!r}: not found")
            return self._send(response_opcode(Opcode.GET, ok=False), FILE_NOT_FOUND)
        except FileTooLarge as e:
            logger.info(f"[{self.client_id}] GET {path!r}: too large ({e.size} bytes)")
            return self._send(
                response_opcode(Opcode.GET, ok=False), too_large_message(e.limit)
            )
        except FileError as e:
            # FileReadError, or any other resolver failure
            logger.info(f"[{self.client_id}] GET {path!r}: read error ({e})")
            return self._send(response_opcode(Opcode.GET, ok=False), READ_ERROR)

        logger.info(f"[{self.client_id}] GET {path!r}: {len(content)} bytes")
        return self._send(response_opcode(Opcode.GET, ok=True), content)

    def _send(self, opcode: int, content) -> bool:
        if isinstance(content, str):
            content = content.encode("utf-8")
        return self.connection.send_frame(opcode, content)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def _close(self):
        self.state = HandlerState.CLOSING
        logger.info(f"[{self.client_id}] Closing connection with client")

        try:
            if self.connection.is_open:
                # Courtesy notification; the peer may already be gone
                self.connection.send_frame(Opcode.FIN)
            self.connection.close()
        finally:
            self.state = HandlerState.TERMINATED
            self._terminated.set()
            if self._on_terminate is not None:
                self._on_terminate(self)

    def __repr__(self) -> str:
        return f"ClientHandler({self.client_id!r}, state={self.state.value})"


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Opcodes are classified once into a RequestKind and dispatched
# 2. Resolver outcomes become GET|RSP / GET|ERR frames
# 3. Malformed or unknown opcodes get one ERR frame, then the connection ends
# 4. Close requests are honored only between requests
# 5. CLOSING always deregisters from the server
# =============================================================================
