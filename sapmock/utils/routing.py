"""
Path Templates

Compiles endpoint path templates such as ``/materials/{id}`` and matches
concrete request paths against them.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple


def split_path(path: str) -> List[str]:
    """Split a URL path into non-empty segments"""
    return [seg for seg in (path or "").split("/") if seg]


def normalize_path(path: str) -> str:
    """Canonical form: leading slash, no trailing slash, no empty segments"""
    return "/" + "/".join(split_path(path))


class PathTemplate:
    """
    A compiled endpoint path template.
    Responsibilities:
    - Extract path parameters from a concrete path
    - Report specificity (number of parameter segments)
    - Detect templates that could match the same concrete path
    """

    def __init__(self, template: str):
        self.template = normalize_path(template)
        self.segments: Tuple[Tuple[bool, str], ...] = tuple(
            self._compile(seg) for seg in split_path(template)
        )

    @staticmethod
    def _compile(segment: str) -> Tuple[bool, str]:
        if segment.startswith("{") and segment.endswith("}") and len(segment) > 2:
            return True, segment[1:-1]
        return False, segment

    @property
    def wildcards(self) -> int:
        return sum(1 for is_param, _ in self.segments if is_param)

    @property
    def shape(self) -> str:
        """Template with parameter names erased, e.g. /materials/{}"""
        return "/" + "/".join("{}" if is_param else value for is_param, value in self.segments)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        parts = split_path(path)
        if len(parts) != len(self.segments):
            return None

        params: Dict[str, str] = {}
        for (is_param, value), part in zip(self.segments, parts):
            if is_param:
                params[value] = part
            elif value != part:
                return None
        return params

    def overlaps(self, other: "PathTemplate") -> bool:
        """True if some concrete path is matched by both templates"""
        if len(self.segments) != len(other.segments):
            return False
        for (a_param, a_value), (b_param, b_value) in zip(self.segments, other.segments):
            if not a_param and not b_param and a_value != b_value:
                return False
        return True

    def __repr__(self) -> str:
        return f"PathTemplate({self.template!r})"
