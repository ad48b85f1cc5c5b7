"""HTTP byte range parsing."""

import re
from dataclasses import dataclass
from typing import Optional

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range within a resource of ``total`` bytes."""

    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"


def parse_range_header(header: Optional[str], size: int) -> Optional[ByteRange]:
    """Parse a single-range ``Range`` header against a resource size.

    Supports ``bytes=a-b``, ``bytes=a-`` and the suffix form ``bytes=-n``.
    An end beyond the resource is clamped to the last byte.

    Args:
        header: Raw ``Range`` header value, or None.
        size: Total resource size in bytes.

    Returns:
        The satisfiable range, or None when the header is absent, malformed,
        multi-range or unsatisfiable. Callers serve the full content for None.
    """
    if not header or size <= 0:
        return None

    match = _RANGE_RE.match(header)
    if not match:
        return None

    start_text, end_text = match.groups()
    if not start_text and not end_text:
        return None

    if not start_text:
        suffix = int(end_text)
        if suffix == 0:
            return None
        start = max(size - suffix, 0)
        end = size - 1
    else:
        start = int(start_text)
        end = int(end_text) if end_text else size - 1
        end = min(end, size - 1)

    if start >= size or start > end:
        return None

    return ByteRange(start=start, end=end, total=size)
