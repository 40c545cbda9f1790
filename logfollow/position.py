"""Position store: persists the read position of a followed file to survive restarts.

The position file is a small YAML mapping::

    Inode: 1314
    Offset: 2048
    Size: 4096

It is opened once per session and rewritten in place (truncate, rewind, write,
fsync) after every change, so a crash loses at most the record in flight.
"""

import logging
import os
from dataclasses import dataclass

import yaml

from logfollow.errors import PositionFileError

logger = logging.getLogger(__name__)

_FIELDS = (("Inode", "identity"), ("Offset", "offset"), ("Size", "size"))


@dataclass
class TailPosition:
    identity: int = 0   # st_ino of the file the offset belongs to
    offset: int = 0     # bytes already fully consumed
    size: int = 0       # file size last observed

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, attr in _FIELDS}

    @classmethod
    def from_dict(cls, data: dict) -> "TailPosition":
        values = {}
        for key, attr in _FIELDS:
            value = data.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer, got {value!r}")
            values[attr] = value
        if values["identity"] < 0:
            raise ValueError(f"Inode must be unsigned, got {values['identity']}")
        if values["size"] < 0:
            raise ValueError(f"Size must not be negative, got {values['size']}")
        if not 0 <= values["offset"] <= values["size"]:
            raise ValueError(f"Offset must be within 0..Size ({values['size']}), "
                             f"got {values['offset']}")
        return cls(**values)


class PositionStore:
    """Owns the position file handle for the lifetime of one session.

    With ``path=None`` the store is ephemeral: ``load`` returns the zero
    position and ``save`` does nothing.
    """

    def __init__(self, path: str | None):
        self._path = path
        self._fh = None
        self._created = False

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def created(self) -> bool:
        """True when no earlier position existed (file just created, or no file configured)."""
        return self._created or self._path is None

    def load(self) -> TailPosition:
        """Open (creating if missing) and parse the position file."""
        if self._path is None:
            return TailPosition()

        try:
            try:
                self._fh = open(self._path, "r+b")
            except FileNotFoundError:
                os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
                self._fh = open(self._path, "w+b")
                self._created = True
                logger.info("Created position file %s", self._path)
                return TailPosition()
            raw = self._fh.read()
        except OSError as e:
            self.close()
            raise PositionFileError(f"Cannot read position file: {e}", path=self._path) from e

        try:
            data = yaml.safe_load(raw)
            if data is None:
                return TailPosition()
            if not isinstance(data, dict):
                raise ValueError(f"expected a mapping, got {type(data).__name__}")
            position = TailPosition.from_dict(data)
        except (yaml.YAMLError, ValueError) as e:
            self.close()
            raise PositionFileError(f"Corrupt position file: {e}", path=self._path) from e

        logger.debug("Loaded position from %s: %s", self._path, position)
        return position

    def save(self, position: TailPosition) -> None:
        """Overwrite the whole file with ``position`` and force it to stable storage."""
        if self._path is None:
            return
        if self._fh is None:
            raise PositionFileError("Position file is not open", path=self._path,
                                    offset=position.offset)

        payload = yaml.safe_dump(position.to_dict(), sort_keys=False).encode("utf-8")
        try:
            self._fh.truncate(0)
            self._fh.seek(0)
            self._fh.write(payload)
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as e:
            raise PositionFileError(f"Cannot write position file: {e}", path=self._path,
                                    offset=position.offset) from e

    def close(self) -> None:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            fh.close()
