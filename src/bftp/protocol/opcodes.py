"""
=============================================================================
BFTP OPCODES
=============================================================================

Every frame carries a single opcode byte. The byte is a set of bit flags:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         OPCODE BIT LAYOUT                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │      bit:   7   6   5   4   3   2   1   0                           │
    │           ┌───┬───┬───┬───┬───┬───┬───┬───┐                         │
    │           │ - │ - │ - │ERR│RSP│FIN│PUT│GET│                         │
    │           └───┴───┴───┴───┴───┴───┴───┴───┘                         │
    │                                                                      │
    │      REQUEST BITS   GET=0x01  PUT=0x02  FIN=0x04                     │
    │      RESPONSE BITS  RSP=0x08  ERR=0x10                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A request has exactly one request bit set. A response repeats the request
bit and adds RSP (success) or ERR (failure):

    GET request         0x01
    GET succeeded       0x09   (GET | RSP)
    GET failed          0x11   (GET | ERR)

RSP and ERR together, no request bit, or several request bits make the
opcode malformed.

=============================================================================
"""

from enum import Enum, IntFlag


VERSION = "1.0"


class Opcode(IntFlag):
    """The five opcode bits."""
    GET = 0x01
    PUT = 0x02
    FIN = 0x04
    RSP = 0x08
    ERR = 0x10


REQUEST_BITS = Opcode.GET | Opcode.PUT | Opcode.FIN
RESPONSE_BITS = Opcode.RSP | Opcode.ERR

# Named combinations
GET_RSP = Opcode.GET | Opcode.RSP   # 0x09
PUT_RSP = Opcode.PUT | Opcode.RSP   # 0x0A
FIN_RSP = Opcode.FIN | Opcode.RSP   # 0x0C
GET_ERR = Opcode.GET | Opcode.ERR   # 0x11
PUT_ERR = Opcode.PUT | Opcode.ERR   # 0x12
FIN_ERR = Opcode.FIN | Opcode.ERR   # 0x14


def is_get(opcode: int) -> bool:
    return bool(opcode & Opcode.GET)


def is_put(opcode: int) -> bool:
    return bool(opcode & Opcode.PUT)


def is_fin(opcode: int) -> bool:
    return bool(opcode & Opcode.FIN)


def is_response(opcode: int) -> bool:
    return bool(opcode & Opcode.RSP)


def is_error(opcode: int) -> bool:
    return bool(opcode & Opcode.ERR)


def response_opcode(request_bit: int, ok: bool) -> int:
    """
    Build the response opcode for a request.

    Args:
        request_bit: The request bit being answered (GET, PUT or FIN).
        ok: True for a success (RSP) response, False for ERR.

    Returns:
        ``request_bit | RSP`` or ``request_bit | ERR``.
    """
    return int(request_bit) | (Opcode.RSP if ok else Opcode.ERR)


def is_well_formed(opcode: int) -> bool:
    """
    Check the combination rules.

    Exactly one of GET/PUT/FIN must be set, and RSP and ERR may not both
    be set. Bits above ERR are not inspected here; ``classify`` rejects
    them.
    """
    request_bits = bin(opcode & REQUEST_BITS).count("1")
    if request_bits != 1:
        return False
    return (opcode & RESPONSE_BITS) != RESPONSE_BITS


class RequestKind(Enum):
    """What a server should do with an incoming opcode."""
    GET = "get"
    PUT = "put"
    FIN = "fin"
    UNSUPPORTED = "unsupported"


_REQUESTS = {
    Opcode.GET: RequestKind.GET,
    Opcode.PUT: RequestKind.PUT,
    Opcode.FIN: RequestKind.FIN,
}


def classify(opcode: int) -> RequestKind:
    """
    Decode a raw opcode byte into the request it represents.

    Only a bare request bit is a request. Malformed opcodes, responses
    sent by the peer, and opcodes with unknown bits are all UNSUPPORTED.
    """
    if not is_well_formed(opcode):
        return RequestKind.UNSUPPORTED
    return _REQUESTS.get(opcode, RequestKind.UNSUPPORTED)


def request_bit(opcode: int) -> int:
    """Return the single request bit of ``opcode``, or 0 if there isn't exactly one."""
    bits = opcode & REQUEST_BITS
    if bin(bits).count("1") != 1:
        return 0
    return int(bits)


def describe(opcode: int) -> str:
    """
    Human-readable opcode name for logs, e.g. ``"GET|RSP"`` or ``"0x00"``.
    """
    names = [flag.name for flag in Opcode if opcode & flag]
    unknown = opcode & ~int(REQUEST_BITS | RESPONSE_BITS) & 0xFF
    if unknown:
        names.append(f"0x{unknown:02x}")
    return "|".join(names) if names else f"0x{opcode:02x}"
