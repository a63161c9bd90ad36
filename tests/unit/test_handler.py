"""
Unit tests for ClientHandler, driven over socket pairs.
"""

import socket
import threading

import pytest

from bftp.core.connection import Connection
from bftp.core.handler import (
    ClientHandler,
    HandlerState,
    format_size,
    too_large_message,
)
from bftp.handlers.files import FileResolver, FileReadError
from bftp.protocol import Opcode, StreamClosed

from conftest import README_BYTES, NESTED_BYTES, send_frame, recv_frame, recv_until_closed


class HandlerHarness:
    """A ClientHandler on its own thread, plus the peer end of its socket."""

    def __init__(self, resolver, max_frame_size: int = 1024):
        server_sock, self.peer = socket.socketpair()
        self.peer.settimeout(5.0)
        self.terminated_with = []

        conn = Connection(
            socket=server_sock,
            address=("127.0.0.1", 50000),
            poll_interval=0.05,
            send_timeout=5.0,
            max_frame_size=max_frame_size,
        )
        self.handler = ClientHandler(conn, resolver, on_terminate=self.terminated_with.append)
        self.thread = threading.Thread(target=self.handler.run, daemon=True)
        self.thread.start()

    def request(self, opcode: int, content: bytes = b""):
        send_frame(self.peer, opcode, content)
        return recv_frame(self.peer)

    def finish(self):
        """Wait for the handler to terminate and release the peer socket."""
        assert self.handler.wait(timeout=5.0)
        self.thread.join(timeout=5.0)
        self.peer.close()


@pytest.fixture
def harness(resolver):
    h = HandlerHarness(resolver)
    yield h
    h.handler.request_close()
    h.handler.wait(timeout=5.0)
    h.peer.close()


class SlowResolver:
    """Blocks inside resolve() until released."""

    def __init__(self, content: bytes):
        self.content = content
        self.entered = threading.Event()
        self.release = threading.Event()

    def resolve(self, path: str) -> bytes:
        self.entered.set()
        self.release.wait(timeout=5.0)
        return self.content


class BrokenResolver:

    def resolve(self, path: str) -> bytes:
        raise FileReadError(path, "Input/output error")


class TestGet:
    """GET requests and their responses."""

    def test_get_file(self, harness: HandlerHarness):
        frame = harness.request(Opcode.GET, b"README.md")

        assert frame.opcode == 0x09
        assert frame.content == README_BYTES

    def test_get_nested_binary(self, harness: HandlerHarness):
        frame = harness.request(Opcode.GET, b"docs/nested.bin")

        assert frame.opcode == Opcode.GET | Opcode.RSP
        assert frame.content == NESTED_BYTES

    def test_get_missing(self, harness: HandlerHarness):
        frame = harness.request(Opcode.GET, b"missing.txt")

        assert frame.opcode == 0x11
        assert frame.text == "File not found"

    def test_get_traversal(self, harness: HandlerHarness):
        """Files outside the root look exactly like missing files."""
        frame = harness.request(Opcode.GET, b"../secret.txt")

        assert frame.opcode == 0x11
        assert frame.text == "File not found"

    def test_get_invalid_utf8(self, harness: HandlerHarness):
        frame = harness.request(Opcode.GET, b"\xff\xfe")

        assert frame.opcode == 0x11
        assert frame.text == "File not found"

    def test_connection_survives_errors(self, harness: HandlerHarness):
        assert harness.request(Opcode.GET, b"missing.txt").opcode == 0x11
        assert harness.request(Opcode.GET, b"README.md").opcode == 0x09
        assert harness.handler.requests_handled == 2

    def test_too_large(self, sandbox):
        h = HandlerHarness(FileResolver(sandbox, max_file_size=16))

        frame = h.request(Opcode.GET, b"README.md")

        assert frame.opcode == 0x11
        assert frame.text == "Requested file is too large (> ~16B)"

        h.handler.request_close()
        h.finish()

    def test_read_error(self):
        h = HandlerHarness(BrokenResolver())

        frame = h.request(Opcode.GET, b"README.md")

        assert frame.opcode == 0x11
        assert frame.text == "Encountered error while reading file"

        h.handler.request_close()
        h.finish()


class TestOtherCommands:

    def test_put_unsupported(self, harness: HandlerHarness):
        """PUT is answered with PUT|ERR and the connection stays usable."""
        frame = harness.request(Opcode.PUT, b"upload.txt")

        assert frame.opcode == 0x12
        assert frame.text == "Unsupported command"
        assert harness.request(Opcode.GET, b"README.md").opcode == 0x09

    def test_zero_opcode(self, harness: HandlerHarness):
        """No request bit: bare ERR, then the server closes."""
        send_frame(harness.peer, 0x00)

        frames = recv_until_closed(harness.peer)

        assert [f.opcode for f in frames] == [0x10, 0x04]
        assert frames[0].text == "Unsupported command"
        assert frames[1].content == b""

    def test_peer_sends_response(self, harness: HandlerHarness):
        """A GET|RSP from the peer is not a request."""
        send_frame(harness.peer, 0x09, b"README.md")

        frames = recv_until_closed(harness.peer)

        assert [f.opcode for f in frames] == [0x11, 0x04]
        assert frames[0].text == "Unsupported command"

    def test_multiple_request_bits(self, harness: HandlerHarness):
        send_frame(harness.peer, 0x03, b"README.md")

        frames = recv_until_closed(harness.peer)

        assert frames[0].opcode == 0x10

    def test_oversized_request(self, resolver):
        """A request larger than the limit ends the connection without an answer."""
        h = HandlerHarness(resolver, max_frame_size=64)
        h.peer.sendall(b"\x00\x00\x10\x00\x01")

        frames = recv_until_closed(h.peer)

        assert [f.opcode for f in frames] == [Opcode.FIN]
        h.finish()


class TestClosing:
    """FIN handshake and close requests."""

    def test_fin_handshake(self, resolver):
        h = HandlerHarness(resolver)
        send_frame(h.peer, Opcode.FIN)

        frames = recv_until_closed(h.peer)

        assert len(frames) == 1
        assert frames[0].opcode == Opcode.FIN
        assert frames[0].content == b""

        h.finish()
        assert h.handler.state == HandlerState.TERMINATED
        assert h.terminated_with == [h.handler]

    def test_close_request_while_idle(self, resolver):
        h = HandlerHarness(resolver)
        assert h.request(Opcode.GET, b"README.md").opcode == 0x09

        h.handler.request_close()

        assert recv_until_closed(h.peer) == [(Opcode.FIN, b"")]
        h.finish()

    def test_close_request_waits_for_response(self):
        """A request already being served is answered in full first."""
        payload = b"z" * 200_000
        slow = SlowResolver(payload)
        h = HandlerHarness(slow)

        send_frame(h.peer, Opcode.GET, b"big.bin")
        assert slow.entered.wait(timeout=5.0)

        h.handler.request_close()
        assert not h.handler.terminated
        slow.release.set()

        frames = recv_until_closed(h.peer)

        assert [f.opcode for f in frames] == [0x09, Opcode.FIN]
        assert frames[0].content == payload
        h.finish()

    def test_peer_disconnect(self, resolver):
        """The handler terminates on its own when the peer goes away."""
        h = HandlerHarness(resolver)
        h.peer.close()

        assert h.handler.wait(timeout=5.0)
        h.thread.join(timeout=5.0)
        assert h.handler.state == HandlerState.TERMINATED
        assert h.terminated_with == [h.handler]

    def test_request_close_is_idempotent(self, resolver):
        h = HandlerHarness(resolver)
        h.handler.request_close()
        h.handler.request_close()

        assert h.handler.close_requested
        assert len(recv_until_closed(h.peer)) == 1
        h.finish()
        assert len(h.terminated_with) == 1

    def test_setup_failure(self, resolver):
        """A socket that can't be configured still terminates cleanly."""
        server_sock, peer = socket.socketpair()
        server_sock.close()
        peer.close()
        terminated = []

        handler = ClientHandler(
            Connection(socket=server_sock, address=("127.0.0.1", 1)),
            resolver,
            on_terminate=terminated.append,
        )
        handler.run()

        assert handler.state == HandlerState.TERMINATED
        assert terminated == [handler]


class TestMessages:

    def test_format_size(self):
        assert format_size(16) == "16B"
        assert format_size(1536) == "1.5KiB"
        assert format_size(64 * 1024 * 1024) == "64MiB"
        assert format_size(2 * 1024 ** 3) == "2GiB"

    def test_too_large_default_limit(self):
        assert too_large_message(2 * 1024 ** 3) == "Requested file is too large (> ~2GiB)"


def test_read_after_close_raises(resolver):
    h = HandlerHarness(resolver)
    send_frame(h.peer, Opcode.FIN)
    recv_until_closed(h.peer)

    with pytest.raises(StreamClosed):
        recv_frame(h.peer)
    h.finish()
