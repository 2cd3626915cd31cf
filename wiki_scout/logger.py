"""Logging setup shared by the crawler, the search layer and the CLI.

Everything logs under one ``WikiScout`` logger. Modules ask for a child
(``get_logger("crawler")`` gives ``WikiScout.crawler``) so a single
:func:`configure` call controls the level and destinations of the whole
package. Records go to stdout and, when a log file is given, to a size-rotated
file.

Model loading pulls in chatty third-party loggers; they are held at WARNING
unless the project level is stricter.
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, Iterable, Union

_DEFAULT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOGGER_NAME: Final[str] = "WikiScout"

# rotate at 5 MiB, keep three old files
_MAX_BYTES: Final[int] = 5 * 1024 * 1024
_BACKUPS: Final[int] = 3

_THIRD_PARTY: Final[tuple[str, ...]] = (
    "aiohttp.access",
    "huggingface_hub",
    "sentence_transformers",
    "urllib3",
)

_LevelT = Union[int, str]


def _with_format(handler: logging.Handler, fmt: str) -> logging.Handler:
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _rotating_file(path: Path, fmt: str) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUPS, encoding="utf-8")
    return _with_format(handler, fmt)


def _quiet(names: Iterable[str], level: int) -> None:
    floor = max(level, logging.WARNING)
    for name in names:
        logging.getLogger(name).setLevel(floor)


def configure(
    *,
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
    replace_handlers: bool = True,
) -> logging.Logger:
    """Point the ``WikiScout`` logger at stdout and, optionally, *log_file*.

    With *replace_handlers* (the default) earlier handlers are closed first,
    so calling this twice does not duplicate output.
    """
    root = logging.getLogger(_LOGGER_NAME)
    root.setLevel(level)

    if replace_handlers:
        for old in list(root.handlers):
            root.removeHandler(old)
            old.close()

    root.addHandler(_with_format(logging.StreamHandler(sys.stdout), log_format))
    if log_file is not None:
        root.addHandler(_rotating_file(Path(log_file), log_format))

    root.propagate = False
    _quiet(_THIRD_PARTY, root.level)
    return root


def init_logging(
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
) -> logging.Logger:
    """CLI entry: fresh handlers at *level*."""
    return configure(level=level, log_file=log_file, log_format=log_format)


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(_LOGGER_NAME)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


logger: logging.Logger = init_logging()

__all__ = ["logger", "configure", "init_logging", "get_logger"]
