"""
=============================================================================
HANDLERS MODULE
=============================================================================

Resource access used by the connection handler.

    files.py - FileResolver: sandboxed path → bytes lookup for GET

The resolver knows nothing about frames or opcodes. It raises a
``FileError`` subclass and the connection handler decides which response
frame that becomes.

=============================================================================
"""

from .files import (
    FileResolver,
    FileError,
    FileNotFound,
    FileReadError,
    FileTooLarge,
    resolve,
)

__all__ = [
    "FileResolver",
    "FileError",
    "FileNotFound",
    "FileReadError",
    "FileTooLarge",
    "resolve",
]
