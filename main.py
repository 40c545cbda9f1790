"""Entry point: follow a log file and print each new line to stdout."""

import logging
import signal
import sys
import threading

from logfollow.config import load_config
from logfollow.engine import open_session
from logfollow.errors import TailError
from logfollow.follower import TailFollower


def main(argv: list[str] | None = None) -> int:
    config = load_config(argv)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    try:
        session = open_session(config.log_file, config.position_file, config.tail_options())
    except TailError as e:
        logger.error("Cannot start: %s", e)
        return 1

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    follower = TailFollower(session, shutdown_event)
    follower.start()

    exit_code = 0
    out = sys.stdout.buffer
    try:
        for record in follower:
            out.write(record + b"\n")
            out.flush()
    except TailError as e:
        logger.error("Stopped: %s", e)
        exit_code = 1
    finally:
        follower.stop()

    stats = session.stats
    logger.info("Stats: %d records (%d partial), %d rotations, %d truncations",
                stats.records, stats.partial_records, stats.rotations, stats.truncations)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
