"""
Input validation utilities for Agent History.
"""

import re
from pathlib import Path
from typing import Any, Optional, Union

from .errors import InvalidArgumentError


OID_PATTERN = re.compile(r"^[0-9a-f]{40}$")


def is_valid_oid(value: Any) -> bool:
    """Check whether a value is a full 40-character hex object id."""
    return isinstance(value, str) and bool(OID_PATTERN.match(value.lower()))


def normalize_oid(value: Any) -> Optional[str]:
    """Return the lowercase form of a well-formed object id, or None."""
    if not is_valid_oid(value):
        return None
    return value.lower()


def validate_working_dir(path: Union[str, Path]) -> Path:
    """
    Validate a project root.

    Args:
        path: Project root directory

    Returns:
        Absolute, resolved path

    Raises:
        InvalidArgumentError: If the path is empty or not a directory
    """
    if path is None or str(path) == "":
        raise InvalidArgumentError("Working directory is required")

    resolved = Path(path).expanduser().resolve()
    if not resolved.is_dir():
        raise InvalidArgumentError(
            f"Working directory does not exist: {resolved}",
            path=str(resolved),
        )
    return resolved


def validate_depth(depth: Optional[int]) -> Optional[int]:
    """Validate an optional history depth limit."""
    if depth is None:
        return None
    if isinstance(depth, bool) or not isinstance(depth, int) or depth < 1:
        raise InvalidArgumentError(
            f"depth must be a positive integer, got {depth!r}",
            depth=depth,
        )
    return depth


__all__ = [
    'OID_PATTERN',
    'is_valid_oid',
    'normalize_oid',
    'validate_working_dir',
    'validate_depth',
]
