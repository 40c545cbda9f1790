"""Buffered line scanner over a raw binary file handle."""

import logging
import time
from dataclasses import dataclass
from typing import BinaryIO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanResult:
    record: bytes | None = None
    end_offset: int = 0      # file offset just past the record (and its terminator)
    partial: bool = False    # record had no terminator (quiescence flush)

    @property
    def found(self) -> bool:
        return self.record is not None


NEED_MORE_DATA = ScanResult()


class LineScanner:
    """Produces one ``\\n``-terminated record at a time from ``handle``.

    The buffer holds file bytes starting at ``_base``. ``_start`` marks the
    first byte of the candidate line, ``_scan`` how far it has already been
    searched, and ``_filled`` the end of loaded data. The scanner never reads
    ahead on its own: when ``next`` returns ``NEED_MORE_DATA`` the caller
    decides whether to ``refill``.

    When refills keep returning nothing for ``quiescence_window`` seconds,
    a pending unterminated tail is emitted as a record with ``partial=True``.
    If the writer later finishes that line, the rest of it arrives as a
    separate record, so consumers should treat partial records as suspect.
    """

    def __init__(
        self,
        handle: BinaryIO,
        offset: int = 0,
        buffer_size: int = 4096,
        quiescence_window: float | None = 1.0,
        clock=time.monotonic,
    ):
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self._fh = handle
        self._capacity = buffer_size
        self._quiescence = quiescence_window
        self._clock = clock
        self.reset(offset)

    @property
    def handle(self) -> BinaryIO:
        return self._fh

    @property
    def consumed_offset(self) -> int:
        """File offset just past the last emitted record."""
        return self._base + self._start

    @property
    def load_offset(self) -> int:
        """File offset the next refill reads from."""
        return self._base + self._filled

    @property
    def pending(self) -> int:
        """Number of loaded bytes not yet emitted."""
        return self._filled - self._start

    @property
    def capacity(self) -> int:
        return len(self._buf)

    def reset(self, offset: int) -> None:
        """Drop buffered data and resume reading at ``offset``."""
        self._buf = bytearray(self._capacity)
        self._base = offset
        self._start = 0
        self._scan = 0
        self._filled = 0
        self._stalled_since: float | None = None
        self._high_water = offset   # furthest file offset ever loaded

    def rewind(self, offset: int) -> None:
        """Re-read from ``offset`` on the same handle without restarting quiescence.

        Bytes re-read below the furthest offset already loaded are not new
        data, so they do not postpone the flush of a trailing partial line.
        """
        stalled_since, high_water = self._stalled_since, self._high_water
        self.reset(offset)
        self._stalled_since = stalled_since
        self._high_water = max(high_water, offset)

    def rebind(self, handle: BinaryIO, offset: int = 0) -> None:
        """Switch to a new handle (the caller closes the old one)."""
        self._fh = handle
        self.reset(offset)

    def next(self) -> ScanResult:
        idx = self._buf.find(b"\n", self._scan, self._filled)
        if idx >= 0:
            record = bytes(self._buf[self._start:idx])
            self._start = self._scan = idx + 1
            return ScanResult(record, self._base + self._start)

        self._scan = self._filled
        if self.pending and self._quiescent():
            logger.warning("Flushing %d unterminated bytes at offset %d after %.2fs of quiescence",
                           self.pending, self.consumed_offset, self._quiescence)
            return self.drain_partial()
        return NEED_MORE_DATA

    def drain_partial(self) -> ScanResult | None:
        """Emit pending unterminated bytes as a partial record, if any."""
        if not self.pending:
            return None
        record = bytes(self._buf[self._start:self._filled])
        self._start = self._scan = self._filled
        self._stalled_since = None
        return ScanResult(record, self._base + self._start, partial=True)

    def refill(self) -> int:
        """Read more bytes at ``load_offset``. Returns the number of bytes read."""
        self._compact()

        self._fh.seek(self.load_offset)
        with memoryview(self._buf) as view, view[self._filled:] as window:
            n = self._fh.readinto(window) or 0

        if n:
            self._filled += n
            if self.load_offset > self._high_water:
                self._high_water = self.load_offset
                self._stalled_since = None
        elif self._stalled_since is None:
            self._stalled_since = self._clock()
        return n

    def _compact(self) -> None:
        """Move pending bytes to the front; grow when a single line fills the buffer."""
        if self._start:
            pending = self.pending
            self._buf[:pending] = self._buf[self._start:self._filled]
            self._base += self._start
            self._scan -= self._start
            self._filled = pending
            self._start = 0

        if self._filled == 0 and len(self._buf) > self._capacity:
            self._buf = bytearray(self._capacity)
        elif self._filled == len(self._buf):
            logger.debug("Line at offset %d exceeds %d bytes, growing buffer",
                         self._base, len(self._buf))
            self._buf.extend(bytes(len(self._buf)))

    def _quiescent(self) -> bool:
        if self._quiescence is None or self._stalled_since is None:
            return False
        return self._clock() - self._stalled_since >= self._quiescence
