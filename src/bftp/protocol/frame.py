"""
=============================================================================
FRAME CODEC
=============================================================================

BFTP runs on top of TCP, and TCP is a byte stream: it does not preserve
message boundaries. Every message is therefore wrapped in a frame whose
header says exactly how many content bytes follow.

=============================================================================
WIRE FORMAT
=============================================================================

    ┌──────────────────────────────────────────────────────────────────┐
    │  offset 0        offset 4    offset 5                           │
    │  ┌──────────────┬──────────┬──────────────────────────────────┐ │
    │  │ content-len  │  opcode  │  content                          │ │
    │  │ u32, big end │  1 byte  │  exactly content-len bytes        │ │
    │  └──────────────┴──────────┴──────────────────────────────────┘ │
    │  └───────── header (5 bytes) ─────────┘                          │
    └──────────────────────────────────────────────────────────────────┘

Content is opaque: a UTF-8 path for GET requests, raw file bytes for a
successful GET response, UTF-8 reason text for error responses, and empty
for FIN.

=============================================================================
READING A FRAME
=============================================================================

1. Read exactly 5 header bytes
2. Unpack (length, opcode)
3. Refuse the frame if length exceeds the reader's maximum. This happens
   BEFORE any buffer of that size is allocated.
4. Read exactly ``length`` content bytes

If the stream ends anywhere inside those reads, the peer broke the
framing contract and the reader raises ``StreamClosed``.

=============================================================================
"""

import struct
from typing import BinaryIO, NamedTuple, Optional, Tuple


HEADER = struct.Struct("!IB")
HEADER_SIZE = HEADER.size           # 5 bytes

MAX_CONTENT_LENGTH = 0xFFFFFFFF     # largest value the length field can hold


class ProtocolError(Exception):
    """Base class for framing errors."""


class StreamClosed(ProtocolError):
    """The peer closed the stream before a complete frame arrived."""

    def __init__(self, message: str = "Stream closed", received: int = 0):
        super().__init__(message)
        self.received = received


class FrameTooLarge(ProtocolError):
    """A frame declared more content than the reader is willing to buffer."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"Frame too large: {length} bytes (limit {limit})")
        self.length = length
        self.limit = limit


class Frame(NamedTuple):
    """One decoded frame: ``(opcode, content)``."""
    opcode: int
    content: bytes = b""

    def to_bytes(self) -> bytes:
        return encode(self.opcode, self.content)

    @property
    def text(self) -> str:
        """Content decoded as UTF-8 (replacing invalid bytes)."""
        return self.content.decode("utf-8", errors="replace")


def encode(opcode: int, content: bytes = b"") -> bytes:
    """
    Encode one frame.

    Args:
        opcode: Opcode byte (0-255).
        content: Frame payload.

    Returns:
        header + content, ready for ``sendall()``.
    """
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(f"Content too long for one frame: {len(content)} bytes")
    if not 0 <= opcode <= 0xFF:
        raise ValueError(f"Opcode does not fit in one byte: {opcode}")
    return HEADER.pack(len(content), int(opcode)) + bytes(content)


def parse_header(header: bytes, max_length: Optional[int] = None) -> Tuple[int, int]:
    """
    Unpack a 5-byte header into ``(length, opcode)``.

    Raises:
        FrameTooLarge: If ``max_length`` is given and the declared length
                       exceeds it.
    """
    length, opcode = HEADER.unpack(header)
    if max_length is not None and length > max_length:
        raise FrameTooLarge(length, max_length)
    return length, opcode


def read_exact(stream: BinaryIO, n: int) -> bytes:
    """
    Read exactly ``n`` bytes from a blocking stream.

    Raises:
        StreamClosed: If the stream hits EOF first.
    """
    buf = bytearray()
    while len(buf) < n:
        chunk = stream.read(n - len(buf))
        if not chunk:
            raise StreamClosed(
                f"Stream closed after {len(buf)} of {n} bytes", received=len(buf)
            )
        buf.extend(chunk)
    return bytes(buf)


def decode(stream: BinaryIO, max_length: Optional[int] = None) -> Frame:
    """
    Read and decode one frame from a blocking stream.

    The stream only needs a ``read(n)`` method: ``socket.makefile("rb")``,
    ``io.BytesIO`` and open files all work.

    Opcode legality is NOT checked here; see ``protocol.opcodes.classify``.

    Raises:
        StreamClosed: The stream ended before a complete header/body.
        FrameTooLarge: The declared length exceeds ``max_length``.
        OSError: Any lower-level transport fault, unchanged.
    """
    header = read_exact(stream, HEADER_SIZE)
    length, opcode = parse_header(header, max_length)
    content = read_exact(stream, length) if length else b""
    return Frame(opcode, content)
