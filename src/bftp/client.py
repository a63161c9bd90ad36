"""
=============================================================================
BFTP CLIENT
=============================================================================

A blocking client for one BFTP connection.

    with BFTPClient("127.0.0.1", 64222) as client:
        data = client.get("README.md")
        client.finish()

The protocol is strictly request/response: ``request()`` writes one frame
and reads exactly one frame back before returning.

=============================================================================
"""

import logging
import socket
from typing import Optional

from .protocol.frame import Frame, encode, decode, StreamClosed
from .protocol.opcodes import Opcode, describe, is_error, is_fin


logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """The server answered with an ERR response."""

    def __init__(self, frame: Frame):
        super().__init__(frame.text)
        self.frame = frame
        self.reason = frame.text


class BFTPClient:
    """Client side of one BFTP connection."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0xFADE,
        timeout: Optional[float] = 30.0,
        max_frame_size: Optional[int] = None,
    ):
        """
        Args:
            host: Server host.
            port: Server port.
            timeout: Socket timeout in seconds. None = block forever.
            max_frame_size: Refuse response frames larger than this.
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.max_frame_size = max_frame_size

        self._socket: Optional[socket.socket] = None
        self._reader = None

    def connect(self) -> "BFTPClient":
        self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
        self._reader = self._socket.makefile("rb")
        logger.debug(f"Connected to {self.host}:{self.port}")
        return self

    @property
    def connected(self) -> bool:
        return self._socket is not None

    def send(self, opcode: int, content: bytes = b""):
        """Write one frame without waiting for an answer."""
        self._require_connection()
        self._socket.sendall(encode(opcode, content))

    def receive(self) -> Frame:
        """
        Read one frame.

        Raises:
            StreamClosed: The server closed the connection.
        """
        self._require_connection()
        return decode(self._reader, self.max_frame_size)

    def request(self, opcode: int, content: bytes = b"") -> Frame:
        """Send one request frame and return the response frame."""
        self.send(opcode, content)
        frame = self.receive()
        logger.debug(f"{describe(opcode)} → {describe(frame.opcode)} ({len(frame.content)} bytes)")
        return frame

    def get(self, path: str) -> bytes:
        """
        Fetch a file.

        Raises:
            RemoteError: The server answered GET|ERR (reason in ``.reason``).
        """
        frame = self.request(Opcode.GET, path.encode("utf-8"))
        if is_error(frame.opcode):
            raise RemoteError(frame)
        return frame.content

    def put(self, path: str, data: bytes = b"") -> Frame:
        """
        Send a PUT. The server has no upload support and answers PUT|ERR.

        Raises:
            RemoteError: Always, with the server's reason.
        """
        frame = self.request(Opcode.PUT, path.encode("utf-8") + data)
        if is_error(frame.opcode):
            raise RemoteError(frame)
        return frame

    def finish(self) -> Optional[Frame]:
        """
        Send FIN and wait for the server to close.

        Returns:
            The server's courtesy FIN frame, or None if the server closed
            without one.
        """
        self.send(Opcode.FIN)
        reply = None
        try:
            frame = self.receive()
            if is_fin(frame.opcode):
                reply = frame
        except StreamClosed:
            pass  # Closed without a courtesy frame
        finally:
            self.close()
        return reply

    def close(self):
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

    def _require_connection(self):
        if self._socket is None:
            raise ConnectionError("Client is not connected")

    def __enter__(self) -> "BFTPClient":
        if self._socket is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
