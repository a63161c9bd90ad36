"""
=============================================================================
BFTP - Basic File Transfer Protocol
=============================================================================

A small file server speaking a framed binary protocol over TCP.

=============================================================================
PROTOCOL AT A GLANCE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           ONE FRAME                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   [ length: u32 big-endian ][ opcode: 1 byte ][ content ]           │
    │                                                                      │
    │   GET 0x01   PUT 0x02   FIN 0x04   RSP 0x08   ERR 0x10               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Client                                   Server
      │   GET "README.md"        (0x01)        │
      │ ─────────────────────────────────────► │
      │                                        │  resolve under root_dir
      │   GET|RSP <file bytes>   (0x09)        │
      │ ◄───────────────────────────────────── │
      │                                        │
      │   FIN                    (0x04)        │
      │ ─────────────────────────────────────► │
      │   FIN (courtesy)         (0x04)        │
      │ ◄───────────────────────────────────── │
      │                                   close│

=============================================================================
PACKAGE LAYOUT
=============================================================================

    bftp/
    ├── protocol/       Frame codec and opcode model (pure, no sockets)
    ├── handlers/       Sandboxed file resolver
    ├── core/           Socket server, connection, per-client handler
    ├── server.py       BFTPServer: lifecycle and live handler set
    ├── client.py       BFTPClient
    ├── config.py       ServerConfig
    └── __main__.py     CLI: bftp serve / bftp get

=============================================================================
QUICK START
=============================================================================

    from bftp import BFTPServer, ServerConfig

    server = BFTPServer(ServerConfig(root_dir="./public", port=7000))
    server.run()

    # elsewhere
    from bftp import BFTPClient

    with BFTPClient("127.0.0.1", 7000) as client:
        print(client.get("README.md"))
        client.finish()

=============================================================================
"""

from .config import ServerConfig
from .server import BFTPServer, create_server
from .client import BFTPClient, RemoteError
from .core import BindError, ClientHandler, HandlerState
from .handlers import FileResolver
from .protocol import VERSION, Opcode, Frame, encode, decode

__version__ = "1.0.0"

__all__ = [
    "ServerConfig",
    "BFTPServer",
    "create_server",
    "BFTPClient",
    "RemoteError",
    "BindError",
    "ClientHandler",
    "HandlerState",
    "FileResolver",
    "VERSION",
    "Opcode",
    "Frame",
    "encode",
    "decode",
]
