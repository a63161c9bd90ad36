"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one accepted client socket with frame-level reading and
writing.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

TCP does not preserve message boundaries. A 5-byte header and its content
may arrive in one recv(), in ten, or glued to the start of the next frame:

    Client sends:
        [00 00 00 09 | 01 | README.md]

    Server might receive:
        recv() → 00 00                     (partial header)
        recv() → 00 09 01 REA              (rest of header + some content)
        recv() → DME.md                    (rest of content)

So the connection keeps a receive buffer and only hands out a frame once
the header AND the declared number of content bytes are present. Bytes
past the end of that frame stay in the buffer for the next read.

=============================================================================
WAITING FOR THE NEXT FRAME
=============================================================================

The socket has a short timeout (``poll_interval``). When it fires:

    ┌─────────────────────────────────────────────────────────────────┐
    │  buffer empty?   interrupted()?    action                        │
    │  ─────────────   ──────────────    ───────────────────────────── │
    │  yes             yes               return None (safe point)      │
    │  yes             no                keep waiting                  │
    │  no              -                 keep waiting (mid-frame)      │
    └─────────────────────────────────────────────────────────────────┘

A frame that has started arriving is never abandoned because the server
wants to close.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► WRITING ───────┐
     │             │    ◄─────────────────────┘
     │             │
     │             ▼
     └──────────► CLOSING ──────► CLOSED

=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..protocol.frame import (
    Frame, encode, parse_header, HEADER_SIZE, StreamClosed,
)


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"              # Just accepted, nothing read yet
    READING = "reading"      # Waiting for / receiving a frame
    WRITING = "writing"      # Sending a frame
    CLOSING = "closing"      # Shutdown sequence in progress
    CLOSED = "closed"        # Socket released


def format_address(address) -> str:
    """Render a peer address as ``ip:port``."""
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address) if address else "local"


@dataclass
class Connection:
    """
    A client connection that speaks in frames.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: ``ip:port`` identifier used in logs.
        state: Current connection state.
        frames_read: Number of complete frames received.
        peer_closed: True once the peer has closed (or reset) its side.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = ""
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    frames_read: int = 0
    peer_closed: bool = False

    # Configuration (passed from ServerConfig)
    buffer_size: int = 64 * 1024
    poll_interval: float = 0.5
    send_timeout: Optional[float] = 30.0
    max_frame_size: int = 64 * 1024

    # Internal state
    _buffer: bytearray = field(default_factory=bytearray, repr=False)
    _write_failed: bool = field(default=False, repr=False)

    def __post_init__(self):
        if not self.id:
            self.id = format_address(self.address)

    def open(self):
        """
        Prepare the socket for frame I/O.

        Raises:
            OSError: If the socket can't be configured (e.g. the peer is
                     already gone).
        """
        self.socket.setblocking(True)
        self.socket.settimeout(self.poll_interval)

        # Responses are single frames; send them without Nagle delay
        if self.socket.family in (socket.AF_INET, socket.AF_INET6):
            self.socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_open(self) -> bool:
        """True while frames can still be written to the peer."""
        return (
            self.state not in (ConnectionState.CLOSING, ConnectionState.CLOSED)
            and not self.peer_closed
            and not self._write_failed
        )

    # =========================================================================
    # READING
    # =========================================================================

    def read_frame(self, interrupted: Optional[Callable[[], bool]] = None) -> Optional[Frame]:
        """
        Read one complete frame.

        Args:
            interrupted: Checked every ``poll_interval`` while no bytes of
                         the next frame have arrived. Returning True stops
                         the wait.

        Returns:
            The frame, or None if ``interrupted`` stopped an idle wait.

        Raises:
            StreamClosed: Peer closed or reset the connection.
            FrameTooLarge: Declared length exceeds ``max_frame_size``.
            OSError: Any other socket failure.
        """
        self.state = ConnectionState.READING

        while True:
            frame = self._take_frame()
            if frame is not None:
                self.frames_read += 1
                self.last_activity = time.time()
                return frame

            try:
                chunk = self.socket.recv(self.buffer_size)
            except socket.timeout:
                if not self._buffer and interrupted is not None and interrupted():
                    return None
                continue
            except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError) as e:
                self.peer_closed = True
                raise StreamClosed(
                    f"Connection reset: {e}", received=len(self._buffer)
                ) from e

            if not chunk:
                self.peer_closed = True
                if self._buffer:
                    raise StreamClosed(
                        f"Stream closed mid-frame after {len(self._buffer)} bytes",
                        received=len(self._buffer),
                    )
                raise StreamClosed("Stream closed by peer")

            self._buffer.extend(chunk)
            self.last_activity = time.time()

    def _take_frame(self) -> Optional[Frame]:
        """Pull one frame off the front of the buffer if it's complete."""
        if len(self._buffer) < HEADER_SIZE:
            return None

        # The length is checked as soon as the header is in, before the
        # body is buffered
        length, opcode = parse_header(bytes(self._buffer[:HEADER_SIZE]), self.max_frame_size)

        frame_end = HEADER_SIZE + length
        if len(self._buffer) < frame_end:
            return None

        content = bytes(self._buffer[HEADER_SIZE:frame_end])
        del self._buffer[:frame_end]
        return Frame(opcode, content)

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_frame(self, opcode: int, content: bytes = b"") -> bool:
        """
        Send one frame.

        ``send_timeout`` bounds each write, not the whole frame: a slow
        reader that keeps taking bytes gets the complete frame, a peer
        that stops reading for ``send_timeout`` seconds is dropped.

        Returns:
            True if the whole frame was written, False if the connection
            was lost.
        """
        self.state = ConnectionState.WRITING
        view = memoryview(encode(opcode, content))
        offset = 0

        try:
            self.socket.settimeout(self.send_timeout)
            while offset < len(view):
                # One timeout per write, not per frame
                offset += self.socket.send(view[offset:offset + self.buffer_size])
                self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            self._write_failed = True
            return False
        finally:
            try:
                self.socket.settimeout(self.poll_interval)
            except OSError:
                pass  # Socket already unusable

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, drain_timeout: float = 0.5):
        """
        Close the connection.

        1. shutdown(SHUT_WR) so the peer sees EOF after our last frame
        2. Drain anything the peer still sends, for at most ``drain_timeout``
        3. close() the socket
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        if not self.peer_closed:
            deadline = time.monotonic() + drain_timeout
            try:
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self.socket.settimeout(remaining)
                    if not self.socket.recv(self.buffer_size):
                        break
            except OSError:
                pass  # Timeout or reset, closing anyway

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.frames_read} frames")

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Buffered reading: TCP is a stream, frames are reassembled here
# 2. Length check before buffering the body
# 3. Idle waits are interruptible, partial frames are not
# 4. Clean close: SHUT_WR, bounded drain, close
# =============================================================================
