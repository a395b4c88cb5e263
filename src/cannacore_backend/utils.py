"""
Utility functions for string sanitization and log formatting.

This module provides helper functions for:
- Sanitizing user-provided file names before they become storage keys
- Shortening URLs for log output
- Normalizing scalar-or-list request fields
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, List

# Pattern to match characters that are not safe for object keys
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_filename(filename: str, fallback: str = "file") -> str:
    """
    Generate a storage-safe file name from user input.

    Directory components are dropped, unsafe characters become hyphens and
    the extension is lowercased.

    Args:
        filename: The original file name as sent by the client
        fallback: Stem to use if sanitization leaves nothing

    Returns:
        A safe file name that still carries the original extension

    Example:
        >>> sanitize_filename("../My COA (final).PDF")
        "My-COA-final.pdf"
        >>> sanitize_filename("@#$")
        "file"
    """
    name = Path(filename.replace("\\", "/")).name
    stem, suffix = Path(name).stem, Path(name).suffix.lower()
    safe_stem = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_.") or fallback
    safe_suffix = SANITIZE_PATTERN.sub("", suffix)
    return f"{safe_stem}{safe_suffix}"


def shorten_url(url: str, limit: int = 50) -> str:
    """Truncate a URL for log lines."""
    return url if len(url) <= limit else f"{url[:limit]}..."


def as_list(value: Any) -> List[Any]:
    """
    Normalize a field that clients send either as a scalar or as a list.

    Empty values (None, "", []) become an empty list.
    """
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [item for item in value if item not in (None, "")]
    return [value]
