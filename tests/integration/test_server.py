"""
End-to-end tests: a real BFTPServer on a loopback port.
"""

import logging
import socket
import threading
import time

import pytest

from bftp import BFTPServer, BFTPClient, BindError, RemoteError, ServerConfig
from bftp.protocol import Opcode

from conftest import (
    README_BYTES,
    NESTED_BYTES,
    RunningServer,
    send_frame,
    recv_frame,
    recv_until_closed,
)


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class GatedResolver:
    """Holds every GET until ``release`` is set, counting arrivals."""

    def __init__(self, content: bytes):
        self.content = content
        self.arrived = threading.Semaphore(0)
        self.release = threading.Event()

    def resolve(self, path: str) -> bytes:
        self.arrived.release()
        self.release.wait(timeout=10.0)
        return self.content


class TestRequests:
    """Request/response over TCP."""

    def test_get(self, running_server: RunningServer):
        with BFTPClient("127.0.0.1", running_server.port, timeout=5.0) as client:
            assert client.get("README.md") == README_BYTES
            fin = client.finish()

        assert fin is not None
        assert fin.opcode == Opcode.FIN

    def test_several_gets_one_connection(self, running_server: RunningServer):
        with BFTPClient("127.0.0.1", running_server.port, timeout=5.0) as client:
            assert client.get("README.md") == README_BYTES
            assert client.get("docs/nested.bin") == NESTED_BYTES
            assert client.get("empty.txt") == b""
            client.finish()

    def test_get_missing(self, running_server: RunningServer):
        with BFTPClient("127.0.0.1", running_server.port, timeout=5.0) as client:
            with pytest.raises(RemoteError) as exc_info:
                client.get("nope.txt")
            client.finish()

        assert exc_info.value.frame.opcode == 0x11
        assert exc_info.value.reason == "File not found"

    def test_get_traversal(self, running_server: RunningServer):
        with BFTPClient("127.0.0.1", running_server.port, timeout=5.0) as client:
            with pytest.raises(RemoteError) as exc_info:
                client.get("../secret.txt")

        assert exc_info.value.reason == "File not found"

    def test_put(self, running_server: RunningServer):
        with BFTPClient("127.0.0.1", running_server.port, timeout=5.0) as client:
            with pytest.raises(RemoteError) as exc_info:
                client.put("upload.txt", b"data")

            assert exc_info.value.frame.opcode == 0x12
            assert exc_info.value.reason == "Unsupported command"
            # Still connected
            assert client.get("README.md") == README_BYTES

    def test_unsupported_opcode(self, running_server: RunningServer):
        sock = running_server.connect()
        try:
            send_frame(sock, 0x00)
            frames = recv_until_closed(sock)
        finally:
            sock.close()

        assert [f.opcode for f in frames] == [0x10, 0x04]
        assert frames[0].text == "Unsupported command"

    def test_raw_fin_handshake(self, running_server: RunningServer):
        sock = running_server.connect()
        try:
            send_frame(sock, Opcode.GET, b"README.md")
            assert recv_frame(sock) == (0x09, README_BYTES)

            send_frame(sock, Opcode.FIN)
            assert recv_until_closed(sock) == [(Opcode.FIN, b"")]
        finally:
            sock.close()

    def test_concurrent_clients(self, running_server: RunningServer):
        results = []
        errors = []

        def fetch():
            try:
                with BFTPClient("127.0.0.1", running_server.port, timeout=5.0) as client:
                    results.append(client.get("docs/nested.bin"))
                    client.finish()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=fetch) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        assert errors == []
        assert results == [NESTED_BYTES] * 8


class TestLifecycle:
    """Binding, handler bookkeeping and shutdown."""

    def test_bound_port_reported(self, running_server: RunningServer):
        assert running_server.port != 0
        assert wait_until(lambda: running_server.server.is_running)

    def test_handlers_deregister(self, running_server: RunningServer):
        server = running_server.server

        client = BFTPClient("127.0.0.1", running_server.port, timeout=5.0).connect()
        client.get("README.md")
        assert len(server.handlers) == 1

        client.finish()
        assert wait_until(lambda: not server.handlers)

    def test_abrupt_disconnect_deregisters(self, running_server: RunningServer):
        server = running_server.server

        sock = running_server.connect()
        assert wait_until(lambda: len(server.handlers) == 1)
        sock.close()

        assert wait_until(lambda: not server.handlers)

    def test_shutdown_closes_idle_clients(self, running_server: RunningServer):
        server = running_server.server
        socks = [running_server.connect() for _ in range(3)]
        try:
            assert wait_until(lambda: len(server.handlers) == 3)

            assert server.shutdown(wait=True, timeout=5.0) is True

            for sock in socks:
                assert recv_until_closed(sock) == [(Opcode.FIN, b"")]
        finally:
            for sock in socks:
                sock.close()

        assert not server.handlers

    def test_graceful_shutdown_under_load(self, config: ServerConfig):
        """In-flight requests are answered; new connections are refused."""
        clients = 4
        payload = b"p" * 100_000
        gate = GatedResolver(payload)
        running = RunningServer(BFTPServer(config, resolver=gate)).start()
        server = running.server
        port = running.port
        socks = []

        try:
            for _ in range(clients):
                sock = running.connect()
                send_frame(sock, Opcode.GET, b"big.bin")
                socks.append(sock)

            for _ in range(clients):
                assert gate.arrived.acquire(timeout=5.0)

            server.shutdown()
            running.thread.join(timeout=5.0)
            assert not running.thread.is_alive()

            with pytest.raises(OSError):
                socket.create_connection(("127.0.0.1", port), timeout=1.0).close()

            # Every handler is still waiting on the resolver
            assert len(server.handlers) == clients

            gate.release.set()

            for sock in socks:
                frames = recv_until_closed(sock)
                assert [f.opcode for f in frames] == [0x09, Opcode.FIN]
                assert frames[0].content == payload

            assert server.wait_closed(timeout=5.0) is True
            assert not server.handlers
        finally:
            gate.release.set()
            for sock in socks:
                sock.close()
            running.stop()

    def test_shutdown_is_idempotent(self, running_server: RunningServer):
        server = running_server.server

        assert server.shutdown(wait=True, timeout=5.0) is True
        assert server.shutdown(wait=True, timeout=5.0) is True
        assert wait_until(lambda: not server.is_running)


class TestBinding:

    def test_port_in_use(self, config: ServerConfig):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            server = BFTPServer(config)
            with pytest.raises(BindError):
                server.start(blocker.getsockname()[1])
        finally:
            blocker.close()

    def test_port_out_of_range(self, config: ServerConfig):
        server = BFTPServer(config)

        with pytest.raises(BindError):
            server.start(70000)

        # The rejected port never reaches the shared config
        assert config.port == 0
        config.validate()

    def test_start_configures_logging(self, config: ServerConfig, caplog):
        """Startup lines are logged, not lost before run() sets up logging."""
        config.log_level = "INFO"
        server = BFTPServer(config)
        try:
            server.start()

            assert logging.getLogger("bftp").level == logging.INFO
            assert "Serving files from" in caplog.text
            assert "bound to" in caplog.text
        finally:
            server.shutdown()
            logging.getLogger("bftp").setLevel(logging.NOTSET)

    def test_invalid_config_rejected(self, config: ServerConfig):
        config.poll_interval = 0

        with pytest.raises(ValueError):
            BFTPServer(config)

    def test_missing_root_rejected(self, config: ServerConfig, tmp_path):
        config.root_dir = str(tmp_path / "missing")

        with pytest.raises(ValueError):
            BFTPServer(config)

    def test_bind_error_is_oserror(self):
        assert issubclass(BindError, OSError)
