"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking half of BFTP:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Binds the listening TCP socket                                   │
    │  • Runs the accept() loop                                           │
    │  • Wraps each client socket in a Connection                         │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                         CLIENT HANDLER                               │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • One per connection, on its own thread                            │
    │  • INITIALIZING → SERVING → CLOSING → TERMINATED                    │
    │  • Dispatches GET / PUT / FIN, answers with response frames        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Reads and writes frames through
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Buffered frame reassembly (TCP is a stream!)                     │
    │  • Interruptible idle waits, uninterruptible frames                 │
    │  • SHUT_WR + drain + close                                          │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer, BindError
from .connection import Connection, ConnectionState
from .handler import ClientHandler, HandlerState

__all__ = [
    "SocketServer",     # TCP listener - accepts connections
    "BindError",        # Listening port unavailable
    "Connection",       # Client socket wrapper - frame I/O
    "ConnectionState",  # Connection lifecycle states
    "ClientHandler",    # Per-connection protocol state machine
    "HandlerState",     # Handler lifecycle states
]
