"""
=============================================================================
BFTP PROTOCOL
=============================================================================

The wire-level half of BFTP, with no sockets involved:

    frame.py    - Length-prefixed frame encoding/decoding
    opcodes.py  - Opcode bits, combination rules, request classification

Everything here works on bytes and file-like streams, which keeps it easy
to test with ``io.BytesIO``.

=============================================================================
"""

from .frame import (
    Frame,
    encode,
    decode,
    parse_header,
    HEADER_SIZE,
    MAX_CONTENT_LENGTH,
    ProtocolError,
    StreamClosed,
    FrameTooLarge,
)
from .opcodes import (
    VERSION,
    Opcode,
    RequestKind,
    GET_RSP, PUT_RSP, FIN_RSP,
    GET_ERR, PUT_ERR, FIN_ERR,
    is_get,
    is_put,
    is_fin,
    is_well_formed,
    response_opcode,
    classify,
    describe,
)

__all__ = [
    # Frame codec
    "Frame",
    "encode",
    "decode",
    "parse_header",
    "HEADER_SIZE",
    "MAX_CONTENT_LENGTH",
    "ProtocolError",
    "StreamClosed",
    "FrameTooLarge",
    # Opcodes
    "VERSION",
    "Opcode",
    "RequestKind",
    "GET_RSP", "PUT_RSP", "FIN_RSP",
    "GET_ERR", "PUT_ERR", "FIN_ERR",
    "is_get",
    "is_put",
    "is_fin",
    "is_well_formed",
    "response_opcode",
    "classify",
    "describe",
]
