"""File identity and rotation detection.

A file's identity is its inode number (``st_ino``). CPython fills ``st_ino``
on Windows as well, so the same comparison works on every platform.
"""

import enum
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO

logger = logging.getLogger(__name__)


def file_identity(st: os.stat_result) -> int:
    """Return an equality-comparable identity for the file behind ``st``."""
    return int(st.st_ino)


def open_log(path: str) -> BinaryIO:
    """Open ``path`` for unbuffered binary reads."""
    return open(path, "rb", buffering=0)


class Change(enum.Enum):
    UNCHANGED = "unchanged"
    GREW = "grew"
    ROTATED = "rotated"
    TRUNCATED = "truncated"
    NOT_YET_AVAILABLE = "not_yet_available"


@dataclass
class Classification:
    change: Change
    identity: int | None = None
    size: int | None = None
    handle: BinaryIO | None = None   # set only for ROTATED; the caller owns it


class RotationDetector:
    """Decides whether the handle a session holds still matches what is at the path."""

    def __init__(self, opener=open_log):
        self._opener = opener

    def classify(self, path: str, known_identity: int, known_size: int) -> Classification:
        """Open ``path`` afresh and compare it with the known identity and size.

        Identity is compared before size: a same-identity, same-size file is
        UNCHANGED even if bytes were rewritten in place.
        """
        try:
            fh = self._opener(path)
        except FileNotFoundError:
            logger.debug("%s not present, waiting for it to appear", path)
            return Classification(Change.NOT_YET_AVAILABLE)

        try:
            st = os.fstat(fh.fileno())
        except FileNotFoundError:
            fh.close()
            return Classification(Change.NOT_YET_AVAILABLE)
        except OSError:
            fh.close()
            raise

        identity = file_identity(st)
        size = st.st_size

        if identity != known_identity:
            return Classification(Change.ROTATED, identity, size, handle=fh)

        fh.close()
        if size < known_size:
            return Classification(Change.TRUNCATED, identity, size)
        if size > known_size:
            return Classification(Change.GREW, identity, size)
        return Classification(Change.UNCHANGED, identity, size)
