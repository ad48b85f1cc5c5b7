"""Input validation helpers for uploaded files and served paths."""

import re
from pathlib import Path, PurePosixPath
from typing import Iterable

from streamvault.core.exceptions import InvalidInputError, UnsupportedFileTypeError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def file_extension(filename: str) -> str:
    """Return the lowercase extension of ``filename`` without the dot."""
    return PurePosixPath(filename).suffix.lower().lstrip(".")


def validate_extension(filename: str, allowed: Iterable[str]) -> str:
    """Ensure ``filename`` has one of the allowed video extensions.

    Raises:
        UnsupportedFileTypeError: If the extension is missing or not allowed.
    """
    ext = file_extension(filename)
    if not ext or ext not in set(allowed):
        raise UnsupportedFileTypeError(f"Unsupported file type: '{filename}'")
    return ext


def sanitize_filename(name: str, max_length: int = 120) -> str:
    """Reduce a client supplied name to a safe single path component."""
    base = PurePosixPath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned[:max_length] or "file"


def resolve_within(root: Path, relative: str) -> Path:
    """Resolve ``relative`` under ``root``, rejecting traversal outside it.

    Raises:
        InvalidInputError: If the resolved path escapes ``root``.
    """
    base = root.resolve()
    candidate = (base / relative).resolve()
    if candidate != base and base not in candidate.parents:
        raise InvalidInputError("Path escapes the served directory")
    return candidate
