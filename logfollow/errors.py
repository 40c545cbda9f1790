"""Exception hierarchy for tail sessions."""


class TailError(Exception):
    """Base error. Carries the path and last known offset for manual recovery."""

    def __init__(self, message: str, path: str | None = None, offset: int | None = None):
        self.path = path
        self.offset = offset
        details = []
        if path is not None:
            details.append(f"path={path}")
        if offset is not None:
            details.append(f"offset={offset}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class TailOpenError(TailError):
    """The target file could not be opened when the session was created."""


class PositionFileError(TailError):
    """The position file is unreadable, corrupt or could not be written."""


class TailReadError(TailError):
    """A read or stat on the followed file failed for a reason other than EOF."""


class SessionClosedError(TailError):
    """The session was closed; no further records will be produced."""
