"""TailSession: pull-based follower combining the scanner, rotation detector and position store.

    with open_session("app.log", "app.log.pos") as session:
        for record in session:
            handle(record)

A session is meant for a single consumer. Two sessions sharing one position
file overwrite each other's progress; callers must not do that.
"""

import enum
import logging
import os
import time
from dataclasses import dataclass

from logfollow.config import TailOptions
from logfollow.errors import SessionClosedError, TailError, TailOpenError, TailReadError
from logfollow.identity import Change, Classification, RotationDetector, file_identity, open_log
from logfollow.notify import ChangeNotifier, PollWaiter
from logfollow.position import PositionStore, TailPosition
from logfollow.scanner import LineScanner, ScanResult

logger = logging.getLogger(__name__)


class TailState(enum.Enum):
    OPENING = "opening"
    READY = "ready"
    SCANNING = "scanning"
    WAITING = "waiting"
    ROTATION_CHECK = "rotation_check"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class TailStats:
    records: int = 0
    partial_records: int = 0
    rotations: int = 0
    truncations: int = 0
    rotation_checks: int = 0


class TailSession:
    def __init__(
        self,
        path: str,
        position_path: str | None = None,
        options: TailOptions | None = None,
        waiter=None,
        detector: RotationDetector | None = None,
        clock=time.monotonic,
    ):
        self._path = path
        self._options = options or TailOptions()
        self._store = PositionStore(position_path)
        self._detector = detector or RotationDetector()
        self._waiter = waiter
        self._clock = clock
        self._scanner: LineScanner | None = None
        self._eof_count = 0
        self._pending_rotation: Classification | None = None
        self._deferred_wait = 0.0
        self.position = TailPosition()
        self.stats = TailStats()
        self.state = TailState.OPENING
        self.error: TailError | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def options(self) -> TailOptions:
        return self._options

    def open(self) -> "TailSession":
        """Load the saved position, open the file and decide where to resume."""
        if self.state is not TailState.OPENING:
            raise TailError(f"Cannot open a session in state {self.state.value}", path=self._path)
        try:
            self._open()
        except TailError as e:
            self._fail(e)
            raise
        return self

    def _open(self) -> None:
        saved = self._store.load()

        try:
            fh = open_log(self._path)
        except OSError as e:
            raise TailOpenError(f"Cannot open file to follow: {e}", path=self._path,
                                offset=saved.offset) from e
        try:
            st = os.fstat(fh.fileno())
        except OSError as e:
            fh.close()
            raise TailOpenError(f"Cannot stat file to follow: {e}", path=self._path,
                                offset=saved.offset) from e

        identity = file_identity(st)
        size = st.st_size
        if identity == saved.identity and size >= saved.size:
            offset = saved.offset
        else:
            offset = 0
            if saved.identity:
                logger.info("%s was replaced or truncated since last run, starting from 0", self._path)
        if self._options.resume_from_end and self._store.created:
            offset = size

        self.position = TailPosition(identity, offset, size)
        self._scanner = LineScanner(
            fh,
            offset,
            buffer_size=self._options.buffer_size,
            quiescence_window=self._options.quiescence_window,
            clock=self._clock,
        )
        self._persist()

        if self._waiter is None:
            if self._options.use_notifications:
                self._waiter = ChangeNotifier(self._path)
                self._waiter.start()
            else:
                self._waiter = PollWaiter()

        self.state = TailState.READY
        logger.info("Following %s from offset %d (inode=%d, size=%d)",
                    self._path, offset, identity, size)

    def next(self, block: bool | None = None) -> bytes | None:
        """Return the next record without its terminator.

        In non-blocking mode ``None`` means no record is available yet.
        """
        if self.state is TailState.CLOSED:
            raise SessionClosedError("Session is closed", path=self._path,
                                     offset=self.position.offset)
        if self.state is TailState.FAILED:
            raise self.error
        if self.state is TailState.OPENING:
            self.open()

        if block is None:
            block = self._options.blocking
        try:
            return self._poll(block)
        except TailError as e:
            self._fail(e)
            raise
        except OSError as e:
            err = TailReadError(f"I/O error while following: {e}", path=self._path,
                                offset=self.position.offset)
            self._fail(err)
            raise err from e

    def _poll(self, block: bool) -> bytes | None:
        scanner = self._scanner
        while True:
            self.state = TailState.SCANNING
            result = scanner.next()
            if result.found:
                return self._emit(result)

            if scanner.refill():
                self._eof_count = 0
                self.position.size = max(self.position.size, scanner.load_offset)
                continue

            if self._pending_rotation is not None:
                # The old file is drained; its unterminated tail will never be completed.
                tail = scanner.drain_partial()
                if tail is not None:
                    return self._emit(tail)
                self._finish_rotation()
                continue

            self._eof_count += 1
            if self._eof_count < self._options.rotation_check_threshold:
                if not block:
                    return self._defer(self._options.poll_interval)
                self._wait(self._options.poll_interval)
                continue

            self._eof_count = 0
            if self._check_rotation():
                continue
            if not block:
                return self._defer(self._options.rotation_backoff)
            self._wait(self._options.rotation_backoff)

    def _emit(self, result: ScanResult) -> bytes:
        self.position.offset = result.end_offset
        self.position.size = max(self.position.size, self._scanner.load_offset)
        self._persist()
        self._eof_count = 0
        self.stats.records += 1
        if result.partial:
            self.stats.partial_records += 1
        return result.record

    def _check_rotation(self) -> bool:
        """Classify the path. Returns True when scanning should resume at once."""
        self.state = TailState.ROTATION_CHECK
        self.stats.rotation_checks += 1
        found = self._detector.classify(self._path, self.position.identity, self.position.size)

        if found.change is Change.ROTATED:
            logger.info("Rotation detected for %s (inode %d -> %d), draining old file",
                        self._path, self.position.identity, found.identity)
            self._pending_rotation = found
            return True

        if found.change is Change.TRUNCATED:
            logger.info("Truncation detected for %s (size %d -> %d), rewinding to 0",
                        self._path, self.position.size, found.size)
            self._scanner.reset(0)
            self.position.offset = 0
            self.position.size = found.size
            self.stats.truncations += 1
            self._persist()
            return True

        if found.change is Change.GREW:
            logger.debug("%s grew to %d bytes, resuming at %d",
                         self._path, found.size, self.position.offset)
            # Buffered bytes are re-read, but the quiescence timer keeps running.
            self._scanner.rewind(self.position.offset)
            self.position.size = found.size
            self._persist()
            return True

        return False

    def _finish_rotation(self) -> None:
        rotation, self._pending_rotation = self._pending_rotation, None
        old = self._scanner.handle
        self._scanner.rebind(rotation.handle, 0)
        old.close()
        self.position = TailPosition(rotation.identity, 0, rotation.size)
        self.stats.rotations += 1
        self._persist()
        logger.info("Now following new %s (inode=%d, size=%d)",
                    self._path, rotation.identity, rotation.size)

    def _persist(self) -> None:
        self._store.save(self.position)

    def _wait(self, seconds: float) -> None:
        self.state = TailState.WAITING
        self._waiter.wait(seconds)

    def _defer(self, seconds: float) -> None:
        self.state = TailState.WAITING
        self._deferred_wait = seconds
        return None

    def wait(self) -> None:
        """Sleep for the backoff the last non-blocking ``next`` skipped.

        Goes through the session's waiter, so change notifications still cut
        the wait short.
        """
        seconds, self._deferred_wait = self._deferred_wait, 0.0
        if self.state is TailState.WAITING and self._waiter is not None:
            self._waiter.wait(seconds)

    def close(self) -> None:
        """Release both handles. Safe to call more than once."""
        if self.state is TailState.CLOSED:
            return
        self.state = TailState.CLOSED
        first_error = self._release()
        logger.info("Closed session for %s at offset %d", self._path, self.position.offset)
        if first_error is not None:
            raise TailError(f"Error while closing session: {first_error}", path=self._path,
                            offset=self.position.offset) from first_error

    def _fail(self, error: TailError) -> None:
        logger.error("Session for %s failed: %s", self._path, error)
        self.error = error
        self.state = TailState.FAILED
        released_error = self._release()
        if released_error is not None:
            logger.warning("Error releasing handles for %s: %s", self._path, released_error)

    def _release(self) -> OSError | None:
        closers = []
        if self._scanner is not None:
            closers.append(self._scanner.handle.close)
        if self._pending_rotation is not None:
            closers.append(self._pending_rotation.handle.close)
            self._pending_rotation = None
        closers.append(self._store.close)
        if self._waiter is not None:
            closers.append(self._waiter.close)

        first_error = None
        for close in closers:
            try:
                close()
            except OSError as e:
                if first_error is None:
                    first_error = e
        return first_error

    def __iter__(self):
        while self.state is not TailState.CLOSED:
            yield self.next(block=True)

    def __enter__(self) -> "TailSession":
        if self.state is TailState.OPENING:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def open_session(
    path: str,
    position_path: str | None = None,
    options: TailOptions | None = None,
    **kwargs,
) -> TailSession:
    """Create and open a session. Raises TailOpenError or PositionFileError."""
    return TailSession(path, position_path, options, **kwargs).open()
