"""
pytest configuration and fixtures.
"""

import socket
import threading
from pathlib import Path
from typing import Generator, List, Optional

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bftp import BFTPServer, ServerConfig
from bftp.handlers import FileResolver
from bftp.protocol import Frame, encode, decode, StreamClosed


README_BYTES = b"# BFTP\n\nBasic File Transfer Protocol.\n"
NESTED_BYTES = bytes(range(256)) * 4
SECRET_BYTES = b"top secret, outside the root\n"


@pytest.fixture
def sandbox(tmp_path: Path) -> Path:
    """
    A served root with a few files, and a secret file next to it:

        tmp_path/
        ├── secret.txt          (outside the root)
        └── root/
            ├── README.md
            ├── empty.txt
            └── docs/nested.bin
    """
    root = tmp_path / "root"
    (root / "docs").mkdir(parents=True)
    (root / "README.md").write_bytes(README_BYTES)
    (root / "empty.txt").write_bytes(b"")
    (root / "docs" / "nested.bin").write_bytes(NESTED_BYTES)
    (tmp_path / "secret.txt").write_bytes(SECRET_BYTES)
    return root


@pytest.fixture
def resolver(sandbox: Path) -> FileResolver:
    return FileResolver(sandbox, max_file_size=1024 * 1024)


@pytest.fixture
def config(sandbox: Path) -> ServerConfig:
    """Test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        root_dir=str(sandbox),
        max_file_size=1024 * 1024,
        poll_interval=0.05,
        accept_timeout=0.1,
        send_timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RunningServer:
    """A BFTPServer running its accept loop in a background thread."""

    def __init__(self, server: BFTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.port

    def start(self) -> "RunningServer":
        self.server.start()
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        return self

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock

    def stop(self):
        self.server.shutdown(wait=True, timeout=5.0)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    @property
    def thread(self) -> Optional[threading.Thread]:
        return self._thread


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """A started server on a free port."""
    srv = RunningServer(BFTPServer(config)).start()
    yield srv
    srv.stop()


# ─────────────────────────────────────────────────────────────────────────
# RAW SOCKET HELPERS
# ─────────────────────────────────────────────────────────────────────────

def send_frame(sock: socket.socket, opcode: int, content: bytes = b""):
    sock.sendall(encode(opcode, content))


def recv_frame(sock: socket.socket) -> Frame:
    """Read one frame from a raw socket."""
    reader = sock.makefile("rb", buffering=0)
    try:
        return decode(reader)
    finally:
        reader.close()


def recv_until_closed(sock: socket.socket) -> List[Frame]:
    """Read frames until the peer closes the connection."""
    frames = []
    reader = sock.makefile("rb", buffering=0)
    try:
        while True:
            try:
                frames.append(decode(reader))
            except StreamClosed:
                return frames
    finally:
        reader.close()
