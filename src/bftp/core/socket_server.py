"""
=============================================================================
SOCKET SERVER
=============================================================================

Owns the listening TCP socket and the accept loop. Every accepted client
socket is wrapped in a Connection and passed to a callback; what happens
next (spawning a handler thread) is the BFTP server's business.

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:
    Lets the server rebind its port right after a restart instead of
    failing with "Address already in use" while old sockets sit in
    TIME_WAIT.

Accept timeout:
    accept() is given a timeout (``accept_timeout``) so the loop wakes up
    periodically and notices shutdown even on platforms where closing a
    socket does not interrupt a blocked accept().

=============================================================================
STOPPING THE LOOP
=============================================================================

    shutdown()
        ├──► _running = False
        ├──► listening socket: shutdown(SHUT_RDWR) + close()
        │        └── a blocked accept() fails with OSError
        └──► accept loop sees OSError while not running → normal exit

An accept failure after shutdown is the expected way out of the loop, not
an error.

=============================================================================
SIGNALS
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd, kill) trigger the
``on_signal`` callback so the server shuts down gracefully. Python only
allows signal handlers on the main thread, so they are installed only
when the loop runs there.

=============================================================================
"""

import errno
import socket
import signal
import logging
import threading
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class BindError(OSError):
    """The listening socket could not be bound to the requested port."""


# errno values that mean "this address/port can't be used"
_BIND_ERRNOS = {errno.EADDRINUSE, errno.EACCES, errno.EADDRNOTAVAIL, errno.EPERM}


class SocketServer:
    """
    Low-level TCP listener.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    bind()            Create socket, bind, listen                     │
    │        │                                                             │
    │        ▼                                                             │
    │    serve()           Blocks in the accept loop                       │
    │        │                                                             │
    │        └──► while running:                                           │
    │                accept()      Wait for a client                       │
    │                Connection()  Wrap client socket                      │
    │                callback(conn)                                        │
    │                                                                      │
    │    shutdown()        Stop accepting, close listening socket          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config)
        server.bind()
        server.serve(handle_connection)  # Blocks until shutdown()
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._shutdown_event = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """True while the accept loop is accepting connections."""
        return self._running

    @property
    def is_bound(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port). After binding to port 0 this reports the
        port the OS picked.
        """
        if self._socket is not None:
            try:
                host, port = self._socket.getsockname()[:2]
                return (host, port)
            except OSError:
                pass  # Closed
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(self.config.accept_timeout)
        return sock

    def bind(self, port: Optional[int] = None):
        """
        Bind and listen.

        Args:
            port: Override ``config.port``.

        Raises:
            BindError: Port in use, out of range, or not permitted.
            OSError: Any other failure creating the socket.
        """
        host = self.config.host
        if port is None:
            port = self.config.port
        if not 0 <= port <= 65535:
            raise BindError(f"Invalid port {port}: must be 0-65535")

        sock = self._create_socket()
        try:
            sock.bind((host, port))
            sock.listen(self.config.backlog)
        except OverflowError as e:
            sock.close()
            raise BindError(f"Failed to bind to {host}:{port}: {e}") from e
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            if e.errno in _BIND_ERRNOS:
                raise BindError(e.errno, f"Failed to bind to {host}:{port}: {e.strerror}") from e
            raise

        # The config keeps the last port actually bound
        self.config.port = port
        self._socket = sock
        self._shutdown_event.clear()
        logger.info(f"BFTP server bound to {self.address[0]}:{self.address[1]}")

    def serve(
        self,
        connection_handler: Callable[[Connection], None],
        on_signal: Optional[Callable[[], None]] = None,
    ):
        """
        Accept connections until ``shutdown()`` is called.

        Args:
            connection_handler: Receives each accepted Connection.
            on_signal: Called on SIGINT/SIGTERM (main thread only).
                       Defaults to ``self.shutdown``.
        """
        if self._socket is None:
            self.bind()

        # shutdown() may already have run on another thread
        self._running = not self._shutdown_event.is_set()

        in_main_thread = threading.current_thread() is threading.main_thread()
        if in_main_thread:
            self._setup_signals(on_signal or self.shutdown)

        logger.info("Handling incoming connections")

        try:
            self._accept_loop(connection_handler)
        finally:
            if in_main_thread:
                self._restore_signals()
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        sock = self._socket

        while self._running:
            try:
                client_socket, client_address = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                # Listening socket closed: shutdown in progress
                if self._running and not self._shutdown_event.is_set():
                    logger.error(f"Accept error: {e}")
                break

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                poll_interval=self.config.poll_interval,
                send_timeout=self.config.send_timeout,
                max_frame_size=self.config.max_request_size,
            )
            logger.info(f"Accepted connection from client at {conn.id}")

            connection_handler(conn)

    def shutdown(self):
        """
        Stop accepting connections. Safe to call more than once and from
        any thread.
        """
        if self._shutdown_event.is_set():
            return

        logger.info("Shutting down socket server...")
        self._running = False
        self._shutdown_event.set()

        sock = self._socket
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Not connected / already closed
            try:
                sock.close()
            except OSError:
                pass

    def _cleanup(self):
        self._running = False
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
        logger.info("No longer handling incoming connections")

    def _setup_signals(self, on_signal: Callable[[], None]):
        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            on_signal()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

