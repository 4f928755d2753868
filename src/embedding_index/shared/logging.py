"""
Logging Module - Root logger setup for the service and the CLI.
===============================================================

Every module logs through get_logger(__name__). The root logger gets
one console handler (Rich, or a plain stderr stream when Rich output is
disabled) and, optionally, a UTF-8 file handler.

Embedder SDKs and database drivers are chatty at INFO; they are capped
at WARNING so seed runs only show the service's own progress lines.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

THIRD_PARTY_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncpg",
    "chromadb",
    "google_genai",
    "openai",
    "sentence_transformers",
    "transformers",
    "torch",
)

_console = Console()
_configured = False


def _console_handler(use_rich: bool, log_format: str) -> logging.Handler:
    if use_rich:
        handler: logging.Handler = RichHandler(
            console=_console,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(log_format))
    return handler


def _file_handler(log_file: str, log_format: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(log_format))
    return handler


def quiet_third_party(level: int = logging.WARNING) -> None:
    """Raise the threshold of SDK and driver loggers."""
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    level: str = "INFO",
    use_rich: bool = True,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        use_rich: Rich console output instead of a plain stderr stream
        log_file: Also write records to this file
        log_format: Format for the plain stream and file handlers
        force: Replace an existing configuration (the CLI callback
            does this once it has read --log-level and the config file)
    """
    global _configured

    if _configured and not force:
        return

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    fmt = log_format or DEFAULT_FORMAT

    handlers = [_console_handler(use_rich, fmt)]
    if log_file:
        handlers.append(_file_handler(log_file, fmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    for handler in handlers:
        handler.setLevel(numeric_level)
        root.addHandler(handler)

    quiet_third_party()
    _configured = True

    logging.getLogger(__name__).debug(
        f"Logging configured: level={logging.getLevelName(numeric_level)}, "
        f"rich={use_rich}, file={log_file}"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger, configuring defaults on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Seed started")
    """
    if not _configured:
        setup_logging()
    return logging.getLogger(name)


def get_console() -> Console:
    """The Rich console shared by log output and CLI rendering."""
    return _console
