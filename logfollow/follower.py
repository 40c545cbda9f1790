"""Background follower: drives a session on a thread and hands records to one consumer."""

import logging
import queue
import threading
import time

from logfollow.engine import TailSession
from logfollow.errors import TailError

logger = logging.getLogger(__name__)


class TailFollower:
    """Producer thread scans the file; the consumer takes records from a single-slot queue.

    The slot holds at most one record, so the producer never runs more than
    one record ahead of the consumer. Records keep file order. A record
    already taken from the file but still in the slot at shutdown is lost
    to this consumer even though its offset was saved.
    """

    def __init__(self, session: TailSession, shutdown_event: threading.Event):
        self._session = session
        self._shutdown = shutdown_event
        self._slot: queue.Queue = queue.Queue(maxsize=1)
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: TailError | None = None
        self._get_poll = session.options.poll_interval

    @property
    def session(self) -> TailSession:
        return self._session

    @property
    def error(self) -> TailError | None:
        return self._error

    def start(self) -> None:
        self._thread = threading.Thread(target=self._produce_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal shutdown and wait for the producer to close the session."""
        self._shutdown.set()
        if self._thread:
            self._thread.join(timeout=5)

    def get(self, timeout: float | None = None) -> bytes | None:
        """Next record, or None when ``timeout`` elapses or the follower has stopped.

        Re-raises the session's error once all delivered records are consumed.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                return self._slot.get(timeout=self._get_poll)
            except queue.Empty:
                pass
            if self._done.is_set() and self._slot.empty():
                if self._error is not None:
                    raise self._error
                return None
            if deadline is not None and time.monotonic() >= deadline:
                return None

    def __iter__(self):
        while True:
            record = self.get()
            if record is None:
                return
            yield record

    def _produce_loop(self):
        try:
            while not self._shutdown.is_set():
                record = self._session.next(block=False)
                if record is None:
                    # Backoff goes through the session's waiter; shutdown is
                    # noticed within one backoff.
                    self._session.wait()
                    continue
                self._hand_off(record)
        except TailError as e:
            self._error = e
        finally:
            try:
                self._session.close()
            except TailError as e:
                logger.warning("Error closing session: %s", e)
            self._done.set()

    def _hand_off(self, record: bytes):
        while not self._shutdown.is_set():
            try:
                self._slot.put(record, timeout=self._get_poll)
                return
            except queue.Full:
                continue
        logger.debug("Shutdown with a record still waiting for the consumer")
