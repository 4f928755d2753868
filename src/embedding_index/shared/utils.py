"""
Utilities Module - Common helper functions.
==========================================

Provides utility functions for:
- File I/O (JSONL)
- Directory management
- Text truncation
- Batching
"""

import json
from pathlib import Path
from typing import Any, Iterator, Sequence, TypeVar

from embedding_index.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────────────────────
# Directory Management
# ─────────────────────────────────────────────────────────────────────────────


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        The same path, for chaining
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ─────────────────────────────────────────────────────────────────────────────
# JSONL File I/O
# ─────────────────────────────────────────────────────────────────────────────


def load_jsonl(file_path: Path) -> Iterator[dict[str, Any]]:
    """
    Load data from a JSONL (JSON Lines) file.

    Yields one record at a time. Blank and malformed lines are skipped
    with a warning.

    Args:
        file_path: Path to JSONL file

    Yields:
        Parsed JSON objects
    """
    file_path = Path(file_path)

    with open(file_path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON at line {line_num} in {file_path}: {e}")
                continue


# ─────────────────────────────────────────────────────────────────────────────
# Text Utilities
# ─────────────────────────────────────────────────────────────────────────────


def truncate_text(text: str, max_chars: int | None) -> str:
    """
    Cut text to at most max_chars characters. No suffix is added since
    the result is fed to an embedder, not displayed.

    Example:
        >>> truncate_text("abcdef", 4)
        'abcd'
    """
    if max_chars is None or len(text) <= max_chars:
        return text
    return text[:max_chars]


def preview(text: str, max_length: int = 60) -> str:
    """Shorten text for log lines."""
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


# ─────────────────────────────────────────────────────────────────────────────
# Batching
# ─────────────────────────────────────────────────────────────────────────────


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """
    Split a sequence into consecutive slices of at most `size` items.

    Example:
        >>> list(batched([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    if size <= 0:
        raise ValueError("batch size must be positive")
    for i in range(0, len(items), size):
        yield items[i : i + size]


def parse_key_values(pairs: Sequence[str]) -> dict[str, str]:
    """
    Parse CLI style `key=value` strings into a dictionary.

    Raises:
        ValueError: If a pair has no '='
    """
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected key=value, got '{pair}'")
        result[key.strip()] = value.strip()
    return result
