"""
Helper Functions

This module contains utility functions used throughout the application.
"""

from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from dateutil import parser as dtparser


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse timestamp from various formats"""
    if not x:
        return None
    try:
        dt = dtparser.isoparse(str(x))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def safe_int(x: Any, default: Optional[int] = None) -> Optional[int]:
    """Safely convert to int"""
    try:
        return int(x) if x is not None else default
    except (TypeError, ValueError):
        return default


def header_lookup(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header read"""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


LOG_BODY_LIMIT = 64 * 1024


def decode_body(raw: bytes, limit: int = LOG_BODY_LIMIT) -> str:
    """Body snapshot for the request log, truncated to `limit` bytes"""
    if not raw:
        return ""
    text = raw[:limit].decode("utf-8", errors="replace")
    if len(raw) > limit:
        text += "...[truncated]"
    return text


def to_jsonable(value: Any) -> Any:
    """Turn handler results (pydantic models, dataclasses, lists) into JSON-ready data"""
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def quantile(sorted_vals: List[float], q: float) -> float:
    """Calculate percentile from sorted values"""
    n = len(sorted_vals)
    if n == 0:
        return 0.0
    if n == 1:
        return float(sorted_vals[0])
    pos = (n - 1) * q
    lo = int(pos)
    hi = min(lo + 1, n - 1)
    frac = pos - lo
    return float(sorted_vals[lo] * (1 - frac) + sorted_vals[hi] * frac)


def count_by(values: List[str]) -> Dict[str, int]:
    """Group-by count preserving first-seen order"""
    counts: Dict[str, int] = {}
    for v in values:
        counts[v] = counts.get(v, 0) + 1
    return counts
