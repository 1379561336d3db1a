"""
Centralized logging configuration for LUBA.

Every logger lives under the `luba` root and belongs to one of SUBSYSTEMS.
Lines written while an engine operation is in flight carry that
operation's name, so a refund logged by the ledger during a reveal reads

    2026-01-01 12:00:00 [luba.ledger] DEBUG    reveal_bid | Transfer ...
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Dict, Iterator, Optional

import colorlog

SUBSYSTEMS = (
    "engine",
    "bookkeeping",
    "escrow",
    "events",
    "ledger",
    "registry",
    "storage",
    "cli",
)

_operation: ContextVar[Optional[str]] = ContextVar("luba_operation", default=None)

CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(operation_tag)s%(message)s"
FILE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(operation_tag)s%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class OperationFilter(logging.Filter):
    """Stamp each record with the engine operation in flight, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        operation = _operation.get()
        record.operation = operation
        record.operation_tag = f"{operation} | " if operation else ""
        return True


@contextmanager
def operation_context(operation: str) -> Iterator[None]:
    """Tag log lines emitted inside the block with `operation`."""
    token = _operation.set(operation)
    try:
        yield
    finally:
        _operation.reset(token)


class LUBALogger:
    """Centralized logger for LUBA components"""

    _initialized = False
    _log_dir: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_dir: Optional[str] = None,
        log_to_file: bool = False,
        subsystem_levels: Optional[Dict[str, int]] = None,
    ):
        """
        Setup logging configuration.

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_dir: Directory for log files. If None, uses ./logs
            log_to_file: Whether to write logs to luba.log
            subsystem_levels: Per-subsystem overrides, e.g. {"storage": logging.WARNING}
        """
        if cls._initialized:
            return
        for subsystem in subsystem_levels or {}:
            cls._check_subsystem(subsystem)

        if log_to_file:
            cls._log_dir = Path(log_dir) if log_dir else Path("logs")
            cls._log_dir.mkdir(exist_ok=True, parents=True)

        root_logger = logging.getLogger("luba")
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        # A subsystem may be more verbose than the root, so handlers pass the lowest level
        handler_level = min([level, *(subsystem_levels or {}).values()])

        operation_filter = OperationFilter()

        console_handler = colorlog.StreamHandler(sys.stdout)
        console_handler.setLevel(handler_level)
        console_handler.addFilter(operation_filter)
        console_handler.setFormatter(colorlog.ColoredFormatter(
            CONSOLE_FORMAT,
            datefmt=DATE_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        ))
        root_logger.addHandler(console_handler)

        if log_to_file and cls._log_dir:
            file_handler = logging.FileHandler(cls._log_dir / "luba.log")
            file_handler.setLevel(handler_level)
            file_handler.addFilter(operation_filter)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(file_handler)

        for subsystem in SUBSYSTEMS:
            logging.getLogger(f"luba.{subsystem}").setLevel(logging.NOTSET)
        for subsystem, sub_level in (subsystem_levels or {}).items():
            logging.getLogger(f"luba.{subsystem}").setLevel(sub_level)

        cls._initialized = True

    @classmethod
    def reset(cls):
        """Drop handlers so setup() can run again (CLI re-invocation, tests)."""
        for handler in logging.getLogger("luba").handlers:
            handler.close()
        logging.getLogger("luba").handlers.clear()
        cls._initialized = False
        cls._log_dir = None

    @staticmethod
    def _check_subsystem(name: str) -> None:
        if name.split(".")[0] not in SUBSYSTEMS:
            raise ValueError(f"Unknown logging subsystem: {name}")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a logger for a subsystem, or a child of one ('storage.sqlite').

        Raises:
            ValueError: name is not under one of SUBSYSTEMS
        """
        cls._check_subsystem(name)
        if not cls._initialized:
            cls.setup()

        return logging.getLogger(f"luba.{name}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific subsystem"""
    return LUBALogger.get_logger(name)


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[str] = None,
    log_to_file: bool = False,
    subsystem_levels: Optional[Dict[str, int]] = None,
):
    """Setup logging configuration"""
    LUBALogger.reset()
    LUBALogger.setup(
        level=level,
        log_dir=log_dir,
        log_to_file=log_to_file,
        subsystem_levels=subsystem_levels,
    )
