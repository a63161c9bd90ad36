"""
=============================================================================
BFTP SERVER
=============================================================================

Ties the components together: a listening socket, one handler thread per
client, and a graceful shutdown.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        BFTP SERVER                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   BFTPServer    │                          │
    │                        │  (Orchestrator) │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐        │
    │    │ SocketServer │    │ live handler │    │ FileResolver │        │
    │    │ (accepting)  │    │ set + lock   │    │  (sandbox)   │        │
    │    └──────┬───────┘    └──────┬───────┘    └──────────────┘        │
    │           │                   │                                     │
    │           ▼                   ▼                                     │
    │    ┌──────────────┐    ┌──────────────┐                            │
    │    │  Connection  │◄───│ClientHandler │  one thread each           │
    │    └──────────────┘    └──────────────┘                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE LIVE HANDLER SET
=============================================================================

Three threads of execution touch the same set:

    accept loop      add(handler)          when a client connects
    handler thread   discard(handler)      when its connection ends
    shutdown()       iterate → request_close()

All three go through one lock. The lock is re-entrant because shutdown()
can be called from a signal handler on the main thread, which may be
holding the lock inside the accept loop at that moment.

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    1. Close the listening socket (the accept loop exits)
    2. Stop admitting: a handler registered from now on is told to close
       immediately
    3. request_close() every live handler
    4. Optionally wait for the handlers to terminate (wait=True)

A handler in the middle of a request finishes it and sends the response
before closing. An idle handler notices within ``poll_interval``.

=============================================================================
"""

import logging
import threading
import time
from typing import FrozenSet, Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, ClientHandler
from .handlers import FileResolver


logger = logging.getLogger(__name__)


class BFTPServer:
    """
    Threaded BFTP file server.

    Usage:
        server = BFTPServer(ServerConfig(root_dir="./public", port=7000))
        server.start()          # bind (raises BindError if the port is taken)
        server.run()            # blocks until shutdown()

        # from another thread, or on SIGINT/SIGTERM
        server.shutdown(wait=True, timeout=10.0)
    """

    def __init__(self, config: Optional[ServerConfig] = None, resolver: Optional[FileResolver] = None):
        """
        Args:
            config: Server configuration. Defaults are used if omitted.
            resolver: File resolver for GET. Built from ``config.root_dir``
                      and ``config.max_file_size`` if omitted.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self._socket_server = SocketServer(self.config)
        self._resolver = resolver or FileResolver(self.config.root_dir, self.config.max_file_size)

        self._handlers: set = set()
        self._lock = threading.RLock()
        self._stopping = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port when bound to port 0."""
        return self._socket_server.address

    @property
    def port(self) -> int:
        return self.address[1]

    @property
    def is_running(self) -> bool:
        """True while the accept loop is admitting connections."""
        return self._socket_server.is_running

    @property
    def handlers(self) -> FrozenSet[ClientHandler]:
        """Snapshot of the handlers that have not terminated yet."""
        with self._lock:
            return frozenset(self._handlers)

    @property
    def resolver(self) -> FileResolver:
        return self._resolver

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, port: Optional[int] = None):
        """
        Bind the listening socket.

        Args:
            port: Override ``config.port``.

        Raises:
            BindError: Port in use, out of range, or not permitted.
            OSError: Any other bind failure.
        """
        self._setup_logging()
        self._socket_server.bind(port)
        logger.info(
            f"Serving files from {self._resolver.root_dir} "
            f"(max file size {self._resolver.max_file_size} bytes)"
        )

    def run(self):
        """
        Accept and serve clients until ``shutdown()`` (blocking).

        Binds first if ``start()`` hasn't been called.
        """
        if not self._socket_server.is_bound:
            self.start()

        try:
            self._socket_server.serve(self._spawn_handler, on_signal=self.shutdown)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            self.shutdown()

    def shutdown(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Stop admitting connections and ask every live handler to close.

        Args:
            wait: Also wait for the handlers to terminate.
            timeout: Maximum seconds to wait (only with ``wait=True``).

        Returns:
            True if no handlers are left, False otherwise.
        """
        self._socket_server.shutdown()

        with self._lock:
            first_call = not self._stopping
            self._stopping = True
            handlers = list(self._handlers)

        if first_call:
            logger.info(f"Requesting {len(handlers)} client handler(s) to close")
        for handler in handlers:
            handler.request_close()

        if wait:
            return self.wait_closed(timeout)
        return not self.handlers

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every handler has terminated.

        Returns:
            True if all handlers terminated, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            remaining_handlers = self.handlers
            if not remaining_handlers:
                return True

            handler = next(iter(remaining_handlers))
            if deadline is None:
                handler.wait()
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not handler.wait(remaining):
                    logger.warning(
                        f"{len(self.handlers)} client handler(s) still running after shutdown timeout"
                    )
                    return not self.handlers

            # on_terminate runs just after the terminated flag is set
            with self._lock:
                self._handlers.discard(handler)

    # =========================================================================
    # HANDLER BOOKKEEPING
    # =========================================================================

    def _spawn_handler(self, conn: Connection):
        """Register a handler for ``conn`` and start its thread."""
        handler = ClientHandler(conn, self._resolver, on_terminate=self._deregister)

        with self._lock:
            self._handlers.add(handler)
            if self._stopping:
                handler.request_close()

        thread = threading.Thread(
            target=handler.run,
            name=f"bftp-handler-{conn.id}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            logger.error(f"[{conn.id}] Could not start handler thread: {e}")
            self._deregister(handler)
            conn.close()

    def _deregister(self, handler: ClientHandler):
        with self._lock:
            self._handlers.discard(handler)
        logger.debug(f"[{handler.client_id}] Client handler deregistered")

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("bftp").setLevel(level)


def create_server(config: Optional[ServerConfig] = None) -> BFTPServer:
    """
    Create a BFTP server.

    Example:
        server = create_server(ServerConfig(root_dir="./public", port=0))
        server.start()
        print(server.port)
        server.run()
    """
    return BFTPServer(config)


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. start(): bind, fail fast with BindError
# 2. run(): accept loop, one handler thread per client
# 3. shutdown(): close listener, request_close() every live handler,
#    optionally drain
# 4. The live handler set is only touched under one lock
# =============================================================================
