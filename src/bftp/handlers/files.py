"""
=============================================================================
FILE RESOURCE RESOLVER
=============================================================================

Maps the path in a GET request to the bytes of a file inside a sandboxed
root directory.

=============================================================================
PATH TRAVERSAL
=============================================================================

A peer controls the requested path completely. Without a check, a request
for "../../etc/passwd" walks out of the served directory:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    PATH TRAVERSAL ATTACK                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   root_dir:      /srv/bftp                                          │
    │   requested:     ../../etc/passwd                                   │
    │                                                                      │
    │   naive join:    /srv/bftp/../../etc/passwd                         │
    │   resolved:      /etc/passwd           ← OUTSIDE the root!          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The resolver:
1. Joins the request onto the root and resolves it (following ".." and
   symlinks)
2. Checks that the resolved path is still inside the resolved root
3. Reports anything outside as NOT FOUND, so a peer cannot tell a
   forbidden file from a missing one

Absolute paths ("/etc/passwd") are caught by the same check, since
joining an absolute path onto the root discards the root.

=============================================================================
OUTCOMES
=============================================================================

    Outcome             Raised           Cause
    ────────────────    ──────────────   ─────────────────────────────────
    bytes               -                regular file inside root
    FileNotFound        not found        missing, directory, outside root,
                                         invalid path
    FileReadError       read error       permission denied, I/O fault,
                                         file shrank mid-read
    FileTooLarge        too large        size > max_file_size

=============================================================================
"""

import logging
import os
from pathlib import Path
from typing import Union


logger = logging.getLogger(__name__)


class FileError(Exception):
    """Base class for resolver failures."""

    def __init__(self, path: str, message: str = ""):
        super().__init__(message or path)
        self.path = path


class FileNotFound(FileError):
    """No such file under the sandbox root."""


class FileReadError(FileError):
    """The file exists but could not be read."""


class FileTooLarge(FileError):
    """The file is larger than the configured maximum."""

    def __init__(self, path: str, size: int, limit: int):
        super().__init__(path, f"{path}: {size} bytes exceeds limit of {limit}")
        self.size = size
        self.limit = limit


class FileResolver:
    """
    Resolves request paths to file contents under a root directory.

    Usage:
        resolver = FileResolver("/srv/bftp", max_file_size=64 * 1024 * 1024)

        try:
            data = resolver.resolve("docs/README.md")
        except FileNotFound:
            ...

    The resolver is stateless after construction and safe to share
    between handler threads.
    """

    def __init__(self, root_dir: Union[str, Path], max_file_size: int):
        """
        Args:
            root_dir: Root directory to serve from. Must exist.
            max_file_size: Largest file (in bytes) ``resolve`` will return.
        """
        # Resolve once so the containment check compares canonical paths
        self.root_dir = Path(root_dir).resolve()
        self.max_file_size = max_file_size

        if not self.root_dir.is_dir():
            raise ValueError(f"Root directory does not exist: {root_dir}")

    def resolve(self, requested_path: str) -> bytes:
        """
        Return the full contents of ``requested_path``.

        Args:
            requested_path: Path relative to the root directory.

        Raises:
            FileNotFound: Missing, not a regular file, or outside the root.
            FileReadError: Exists but unreadable.
            FileTooLarge: Larger than ``max_file_size``.
        """
        full_path = self._locate(requested_path)
        return self._read(full_path, requested_path)

    def _locate(self, requested_path: str) -> Path:
        try:
            full_path = (self.root_dir / requested_path).resolve()
        except (OSError, ValueError, RuntimeError) as e:
            # NUL bytes, symlink loops, names the OS rejects
            logger.debug(f"Invalid path {requested_path!r}: {e}")
            raise FileNotFound(requested_path) from e

        # ─────────────────────────────────────────────────────────────────
        # SECURITY: PATH TRAVERSAL CHECK
        # ─────────────────────────────────────────────────────────────────
        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            logger.warning(f"Path traversal attempt: {requested_path!r}")
            raise FileNotFound(requested_path)

        try:
            is_file = full_path.is_file()
        except OSError as e:
            # e.g. a parent directory without search permission
            raise FileReadError(requested_path, str(e)) from e

        if not is_file:
            raise FileNotFound(requested_path)

        return full_path

    def _read(self, path: Path, requested_path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                size = os.fstat(f.fileno()).st_size
                if size > self.max_file_size:
                    raise FileTooLarge(requested_path, size, self.max_file_size)

                # Read at most one byte past the limit in case the file grew
                content = f.read(self.max_file_size + 1)
        except FileNotFoundError as e:
            # Removed between the check and the open
            raise FileNotFound(requested_path) from e
        except OSError as e:
            logger.error(f"Error reading file {path}: {e}")
            raise FileReadError(requested_path, str(e)) from e

        if len(content) > self.max_file_size:
            raise FileTooLarge(requested_path, len(content), self.max_file_size)

        if len(content) < size:
            logger.error(f"Short read on {path}: {len(content)} of {size} bytes")
            raise FileReadError(requested_path, "file truncated while reading")

        return content


def resolve(root_dir: Union[str, Path], requested_path: str, max_file_size: int) -> bytes:
    """
    One-shot convenience wrapper around ``FileResolver``.

    Example:
        data = resolve("/srv/bftp", "README.md", max_file_size=1 << 20)
    """
    return FileResolver(root_dir, max_file_size).resolve(requested_path)


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Security: resolve() + relative_to() keeps every read inside the root
# 2. Outcomes are exceptions; the connection handler turns them into frames
# 3. One size ceiling, checked before and after reading
# =============================================================================
