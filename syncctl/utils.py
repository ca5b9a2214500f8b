from datetime import datetime, timezone
import re
import time
from typing import Iterable, Iterator, List, TypeVar

T = TypeVar("T")

# e.g., "20s", "5m", "1h30m", "2d3h", "90m", "  2h  "
DELAY_RE = re.compile(r"(?i)^\s*(?:(\d+)\s*d)?\s*(?:(\d+)\s*h)?\s*(?:(\d+)\s*m)?\s*(?:(\d+)\s*s)?\s*$")

MINUTE_IN_SECONDS = 60


def parse_delay_to_seconds(s: str) -> int:
    """
    Parse delay strings like '20s', '5m', '1h30m', '2d3h', '90m'.
    Returns total seconds (int). Raises ValueError on bad input or zero.
    """
    if not s:
        raise ValueError("delay string is empty")
    m = DELAY_RE.match(s)
    if not m:
        raise ValueError(f"Invalid delay format: {s!r}")
    d, h, m_, s_ = m.groups()
    total = 0
    if d:  total += int(d) * 86400
    if h:  total += int(h) * 3600
    if m_: total += int(m_) * 60
    if s_: total += int(s_)
    if total <= 0:
        raise ValueError("delay must be > 0 seconds")
    return total


def now_ts() -> int:
    """Current UNIX timestamp in whole seconds."""
    return int(time.time())


def ts_to_iso(ts) -> str:
    """UTC timestamp like '2025-11-06T09:12:34Z' for a UNIX timestamp, '' for None."""
    if not ts:
        return ""
    return datetime.fromtimestamp(int(ts), timezone.utc).isoformat().replace("+00:00", "Z")


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Split items into lists of at most `size` elements, preserving order."""
    if size <= 0:
        raise ValueError("chunk size must be > 0")
    chunk: List[T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def unique_non_empty(items: Iterable[T]) -> List[T]:
    """Drop falsy and repeated items, keeping the first occurrence order."""
    seen = set()
    out = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


class Timer:
    """Wall-clock stopwatch; `stop()` returns elapsed seconds rounded for logs."""

    def __init__(self):
        self.started = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def stop(self, precision: int = 3) -> float:
        return round(self.elapsed(), precision)
