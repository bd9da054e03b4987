"""
Logging setup shared by the contest service, its CLI tasks and tests.
"""

import logging
import os
import re
import sys
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Optional, Union

from colorama import Back, Fore, Style, init

init(autoreset=True)


TRACE_LEVEL_NUM = logging.DEBUG - 5

if not hasattr(logging, "TRACE"):
    logging.TRACE = TRACE_LEVEL_NUM
    logging.addLevelName(logging.TRACE, "TRACE")


def _trace(self: logging.Logger, message, *args, **kwargs):
    if self.isEnabledFor(logging.TRACE):
        self._log(logging.TRACE, message, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _trace  # type: ignore[attr-defined]


class LogLevel(StrEnum):
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def level(self) -> int:
        """The ``logging`` module constant for this level."""
        return logging.getLevelName(self.value)

    @classmethod
    def from_env(cls, default: "LogLevel" = None) -> "LogLevel":
        """Read ``LOG_LEVEL`` from the environment.

        Unknown values fall back to ``default`` (INFO) and are reported once
        on stderr so a typo in deployment config does not go unnoticed.
        """
        fallback = default or cls.INFO
        raw = os.getenv("LOG_LEVEL", fallback.value).upper()
        try:
            return cls(raw)
        except ValueError:
            sys.stderr.write(
                f"{Fore.YELLOW}WARNING{Style.RESET_ALL}: invalid LOG_LEVEL "
                f"'{raw}', using {fallback.value}\n"
            )
            return fallback


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name."""

    LEVEL_COLORS = {
        LogLevel.TRACE: Fore.MAGENTA,
        LogLevel.DEBUG: Fore.CYAN,
        LogLevel.INFO: Fore.GREEN,
        LogLevel.WARNING: Fore.YELLOW,
        LogLevel.ERROR: Fore.RED,
        LogLevel.CRITICAL: Fore.RED + Back.WHITE,
    }

    def format(self, record: logging.LogRecord) -> str:
        try:
            color = self.LEVEL_COLORS.get(LogLevel(record.levelname), Fore.WHITE)
        except ValueError:
            color = Fore.WHITE

        # Format a copy so other handlers still see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{Style.BRIGHT}{record.levelname}{Style.RESET_ALL}"
        return super().format(colored)


DEFAULT_LOG_FORMAT = (
    f"{Fore.BLUE}%(asctime)s.%(msecs)03d{Style.RESET_ALL} | "
    f"%(levelname)s | "
    f"{Fore.BLUE}%(name)s{Style.RESET_ALL}:"
    f"{Fore.BLUE}%(funcName)s{Style.RESET_ALL}:"
    f"{Fore.BLUE}%(lineno)d{Style.RESET_ALL} - "
    f"%(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*m")


@dataclass
class _LoggerSettings:
    log_format: str
    date_format: str


_log_file_path: Optional[Path] = (
    Path(os.environ["LOG_FILE"]).expanduser() if os.getenv("LOG_FILE") else None
)
_MANAGED_LOGGERS: dict[logging.Logger, _LoggerSettings] = {}


def _build_handlers(
    level: int, log_format: str, date_format: str
) -> list[logging.Handler]:
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(ColoredFormatter(log_format, datefmt=date_format))
    handlers: list[logging.Handler] = [stream_handler]

    if _log_file_path:
        _log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(_log_file_path, encoding="utf-8", mode="a")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                _ANSI_ESCAPE_RE.sub("", log_format), datefmt=date_format
            )
        )
        handlers.append(file_handler)

    return handlers


def _replace_handlers(logger: logging.Logger, handlers: list[logging.Handler]):
    for handler in logger.handlers:
        try:
            handler.close()
        except Exception:
            pass
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)


def configure_logging(log_file_path: Optional[Union[str, os.PathLike[str]]] = None):
    """Point every managed logger at ``log_file_path`` in addition to stdout.

    Passing None disables file logging.
    """
    global _log_file_path

    _log_file_path = Path(log_file_path).expanduser() if log_file_path else None

    for logger, settings in _MANAGED_LOGGERS.items():
        level = logger.level or logging.INFO
        _replace_handlers(
            logger, _build_handlers(level, settings.log_format, settings.date_format)
        )


def get_logger(
    name: str,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    handlers: Optional[list[logging.Handler]] = None,
) -> logging.Logger:
    """Return a logger configured from ``LOG_LEVEL``.

    Parameters
    ----------
    name: str
        Logger name, normally ``__name__``.
    log_format: Optional[str]
        Format string; defaults to a coloured ``time | level | origin`` line.
    date_format: Optional[str]
        Date format; defaults to ``%Y-%m-%d %H:%M:%S``.
    handlers: Optional[list[logging.Handler]]
        Explicit handlers. Loggers built with explicit handlers are not
        touched by :func:`configure_logging`.
    """
    log_level = LogLevel.from_env()
    log_format = log_format or DEFAULT_LOG_FORMAT
    date_format = date_format or DEFAULT_DATE_FORMAT

    logger = logging.getLogger(name)
    logger.setLevel(log_level.level)

    if handlers:
        _MANAGED_LOGGERS.pop(logger, None)
        _replace_handlers(logger, handlers)
    else:
        _replace_handlers(
            logger, _build_handlers(log_level.level, log_format, date_format)
        )
        _MANAGED_LOGGERS[logger] = _LoggerSettings(
            log_format=log_format, date_format=date_format
        )

    logger.trace(f"Logger '{name}' initialized with level {log_level}")
    return logger
