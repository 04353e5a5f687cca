"""
Multi-File Writer - Persist rendered configuration files.

Each file is staged under a temporary name in the target directory,
restricted to owner read-only, chowned and then renamed over the final
name. Readers therefore see either the previous content or the new
content of a file, never a truncated one.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

FILE_MODE = 0o400
DIRECTORY_MODE = 0o700


class WriteError(Exception):
    """Raised when a rendered file cannot be persisted."""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


@dataclass
class RenderedFile:
    """A file produced by a render cycle."""

    directory: str
    filename: str
    content: bytes
    uid: int
    gid: int
    mode: int = FILE_MODE

    @property
    def path(self) -> str:
        return os.path.join(self.directory, self.filename)


def ensure_directory(directory: str) -> None:
    """Create the directory and any missing parents."""
    try:
        os.makedirs(directory, mode=DIRECTORY_MODE, exist_ok=True)
    except OSError as e:
        raise WriteError(directory, f"error creating directory: {e}") from e


def write_file(rendered: RenderedFile) -> None:
    """
    Atomically replace a single file.

    Raises:
        WriteError: If staging, chown or rename fails. The staged temporary
            file is removed; the previous file, if any, is left untouched.
    """
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=rendered.directory, prefix=f".{rendered.filename}."
        )
    except OSError as e:
        raise WriteError(rendered.path, f"error staging: {e}") from e

    step = "writing"
    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), rendered.mode)
            f.write(rendered.content)
            f.flush()
            os.fsync(f.fileno())

        step = "chowning"
        os.chown(tmp_path, rendered.uid, rendered.gid)

        step = "renaming"
        os.replace(tmp_path, rendered.path)
    except OSError as e:
        _remove_quietly(tmp_path)
        raise WriteError(rendered.path, f"error {step}: {e}") from e


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def write_files(
    directory: str, files: Sequence[Tuple[str, bytes]], uid: int, gid: int
) -> List[RenderedFile]:
    """
    Write an ordered set of files into one directory.

    A failure aborts the remaining files. Files already written by this call
    stay in place.

    Args:
        directory: Target directory, created if missing
        files: Ordered ``(filename, content)`` pairs
        uid: Owning user for every file
        gid: Owning group for every file

    Returns:
        The files written, in order.

    Raises:
        WriteError: On the first file that cannot be written
    """
    ensure_directory(directory)

    written = []
    for filename, content in files:
        rendered = RenderedFile(
            directory=directory, filename=filename, content=content, uid=uid, gid=gid
        )
        write_file(rendered)
        written.append(rendered)
        logger.debug(f"Wrote {rendered.path} ({len(content)} bytes)")

    return written
