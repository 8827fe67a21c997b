"""Logging utilities for enrollment runs."""

from __future__ import annotations

import atexit
import importlib
import importlib.util
import logging
import logging.handlers
from pathlib import Path
import queue
from typing import Any


SOURCE_SYSTEM = "SYSTEM"
SOURCE_NETBIRD = "NETBIRD"


def _rich_available() -> bool:
    return importlib.util.find_spec("rich") is not None


if _rich_available():
    rich_logging = importlib.import_module("rich.logging")
    rich_console = importlib.import_module("rich.console")
    rich_text = importlib.import_module("rich.text")
    RichHandler = rich_logging.RichHandler
    Console = rich_console.Console
    Text = rich_text.Text
    console = Console(stderr=True)
else:
    RichHandler = None
    Console = None
    Text = None
    console = None


def setup_logging() -> logging.Logger:
    logger = logging.getLogger("netbird_enroll")
    logger.setLevel(logging.INFO)

    if RichHandler is not None:
        if not any(isinstance(h, RichHandler) for h in logger.handlers):
            handler = RichHandler(rich_tracebacks=True, console=console)
            formatter = logging.Formatter("%(message)s", datefmt="[%X]")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
    else:
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

    logger.propagate = False
    return logger


logger = setup_logging()

_queue_listener: logging.handlers.QueueListener | None = None
_queue_handlers: list[logging.Handler] = []
_file_log_path: Path | None = None
_atexit_registered = False


def set_level(level_name: str) -> None:
    """Set the enrollment logger level by name."""

    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)


def _shutdown_file_logging() -> None:
    global _queue_listener

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


def _remove_queue_handlers() -> None:
    for handler in _queue_handlers:
        if handler in logger.handlers:
            logger.removeHandler(handler)
    _queue_handlers.clear()


def enable_file_logging(log_path: Path) -> None:
    """Enable background file logging to the supplied log path."""

    global _queue_listener, _file_log_path, _atexit_registered

    log_path = log_path.expanduser()
    if _file_log_path == log_path and _queue_listener is not None:
        return

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None

    _remove_queue_handlers()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(formatter)

    log_queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = logging.handlers.QueueHandler(log_queue)
    queue_handler.setLevel(logging.DEBUG)

    logger.addHandler(queue_handler)
    _queue_handlers.append(queue_handler)

    _queue_listener = logging.handlers.QueueListener(
        log_queue,
        file_handler,
        respect_handler_level=True,
    )
    _queue_listener.start()

    if getattr(_queue_listener, "_thread", None) is not None:
        _queue_listener._thread.daemon = True

    _file_log_path = log_path

    if not _atexit_registered:
        atexit.register(_shutdown_file_logging)
        _atexit_registered = True


def get_file_log_path() -> Path | None:
    """Return the active log file path, if file logging is enabled."""

    return _file_log_path


def _format_text(message: str, style: str) -> Any:
    if Text is None:
        return message
    return Text(message, style=style)


def _tag(message: str, source: str) -> str:
    return f"[{source}] {message}"


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask a credential for logging, keeping only a short prefix."""

    if not value:
        return "<empty>"
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)


def log_debug(message: str, source: str = SOURCE_SYSTEM) -> None:
    logger.debug(_tag(message, source))


def log_info(message: str, source: str = SOURCE_SYSTEM, style: str = "bold white") -> None:
    logger.info(_format_text(_tag(message, source), style=style))


def log_success(message: str, source: str = SOURCE_SYSTEM) -> None:
    logger.info(_format_text(_tag(message, source), style="bold green"))


def log_warning(message: str, source: str = SOURCE_SYSTEM) -> None:
    logger.warning(_format_text(_tag(message, source), style="bold yellow"))


def log_error(message: str, source: str = SOURCE_SYSTEM) -> None:
    logger.error(_format_text(_tag(message, source), style="bold red"))
