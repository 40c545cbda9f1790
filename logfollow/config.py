"""Configuration: per-session tail options plus the driver config.

The driver config is built from defaults <- YAML file <- env vars <- CLI args
(highest priority).
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass, fields, replace

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TailOptions:
    resume_from_end: bool = False          # only applies when no earlier position exists
    buffer_size: int = 4096
    poll_interval: float = 0.1             # sleep between EOF retries
    rotation_check_threshold: int = 5      # consecutive EOFs before checking the path
    rotation_backoff: float = 0.1          # sleep after an UNCHANGED / missing-file check
    quiescence_window: float | None = 1.0  # None disables the trailing partial-line flush
    blocking: bool = True
    use_notifications: bool = False


@dataclass(frozen=True)
class Config:
    log_file: str = "./test.log"
    position_file: str | None = "./test.log.pos"
    log_level: str = "INFO"
    resume_from_end: bool = False
    buffer_size: int = 4096
    poll_interval: float = 0.1
    rotation_check_threshold: int = 5
    rotation_backoff: float = 0.1
    quiescence_window: float | None = 1.0
    use_notifications: bool = False

    def tail_options(self) -> TailOptions:
        return TailOptions(
            resume_from_end=self.resume_from_end,
            buffer_size=self.buffer_size,
            poll_interval=self.poll_interval,
            rotation_check_threshold=self.rotation_check_threshold,
            rotation_backoff=self.rotation_backoff,
            quiescence_window=self.quiescence_window,
            use_notifications=self.use_notifications,
        )


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_optional_float(value) -> float | None:
    # YAML reads a bare "off" as False.
    if value is None or value is False:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "none", "off"):
        return None
    return float(value)


def _parse_optional_str(value) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    return str(value)


_CONVERTERS = {
    "log_file": str,
    "position_file": _parse_optional_str,
    "log_level": lambda v: str(v).upper(),
    "resume_from_end": _parse_bool,
    "buffer_size": int,
    "poll_interval": float,
    "rotation_check_threshold": int,
    "rotation_backoff": float,
    "quiescence_window": _parse_optional_float,
    "use_notifications": _parse_bool,
}

_ENV_VARS = {name: name.upper() for name in _CONVERTERS}


def load_yaml_config(path: str | None) -> dict:
    """Load the ``tail:`` section of a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    section = data.get("tail", data) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        logger.warning("Config file %s has no 'tail' mapping, using defaults", path)
        return {}
    return {k.replace("-", "_"): v for k, v in section.items() if k.replace("-", "_") in _CONVERTERS}


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Follow a log file across restarts and rotation")
    parser.add_argument("log_file", nargs="?", default=None, help="Path of the file to follow")
    parser.add_argument("--config", default=None, help="YAML config file (section 'tail')")
    parser.add_argument("--position-file", default=None,
                        help="Where to persist the read position ('' disables resuming)")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--resume-from-end", default=None, nargs="?", const="true",
                        help="Start at end of file when no position was saved yet")
    parser.add_argument("--buffer-size", default=None)
    parser.add_argument("--poll-interval", default=None)
    parser.add_argument("--rotation-check-threshold", default=None)
    parser.add_argument("--rotation-backoff", default=None)
    parser.add_argument("--quiescence-window", default=None,
                        help="Seconds before an unterminated last line is emitted ('none' disables)")
    parser.add_argument("--use-notifications", default=None, nargs="?", const="true")
    return parser


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML <- env vars <- CLI args."""
    if argv is None:
        argv = sys.argv[1:]
    args = build_cli_parser().parse_args(argv)

    raw: dict = {}
    raw.update(load_yaml_config(args.config or os.environ.get("CONFIG_PATH")))

    for name, env_name in _ENV_VARS.items():
        if env_name in os.environ:
            raw[name] = os.environ[env_name]

    for name in _CONVERTERS:
        value = getattr(args, name, None)
        if value is not None:
            raw[name] = value

    config = Config()
    known = {f.name for f in fields(Config)}
    overrides = {name: _CONVERTERS[name](value) for name, value in raw.items() if name in known}
    return replace(config, **overrides)
