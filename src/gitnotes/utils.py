"""Utility functions for the note store."""

import re
from typing import Optional

from gitnotes.exceptions import ErrorCode, InvalidArgumentError

MAX_NAME_LENGTH = 200

# Control characters (including NUL) never belong in a file name
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_name(value: Optional[str], field_name: str = "name") -> str:
    """Validate that a value is safe to use as a single path component.

    Owners, notebooks and titles all map to directory or file names, so
    they are held to the same rules:
    - not blank
    - no path separators (/, \\) and no control characters
    - not '.' or '..' and no leading dot (dotted names are reserved for
      hidden files such as the notebook marker and .git)
    - at most MAX_NAME_LENGTH characters

    Args:
        value: The string to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value (unchanged)

    Raises:
        InvalidArgumentError: If the value is unusable as a path component
    """
    if value is None or not value.strip():
        raise InvalidArgumentError(f"{field_name} cannot be blank", field=field_name)

    if "/" in value or "\\" in value:
        raise InvalidArgumentError(
            f"{field_name} cannot contain path separators",
            field=field_name,
            value=value,
        )

    if _CONTROL_CHARS.search(value):
        raise InvalidArgumentError(
            f"{field_name} cannot contain control characters",
            field=field_name,
            value=value,
        )

    if value.startswith("."):
        raise InvalidArgumentError(
            f"{field_name} cannot start with '.'", field=field_name, value=value
        )

    if len(value) > MAX_NAME_LENGTH:
        raise InvalidArgumentError(
            f"{field_name} is longer than {MAX_NAME_LENGTH} characters",
            field=field_name,
            value=value,
        )

    return value


def count_occurrences(text: str, keyword: str) -> int:
    """Count non-overlapping occurrences of keyword in text (case-sensitive).

    Examples:
        >>> count_occurrences("aaaa", "aa")
        2
        >>> count_occurrences("plan the plan", "plan")
        2
    """
    if not keyword or not text:
        return 0
    return text.count(keyword)


def require_keyword(keyword: Optional[str]) -> str:
    """Reject blank search keywords."""
    if keyword is None or not keyword.strip():
        raise InvalidArgumentError(
            "Search keyword cannot be blank",
            field="keyword",
            code=ErrorCode.EMPTY_KEYWORD,
        )
    return keyword


def sanitize_commit_message(message: str, max_length: int = 100) -> str:
    """Sanitize text for use as a git commit message.

    - Truncates to a reasonable length
    - Replaces newlines (could corrupt git log parsing)
    - Prefixes messages starting with a dash (could be confused for git flags)
    """
    sanitized = message[:max_length]
    sanitized = sanitized.replace("\n", " ").replace("\r", " ")
    if sanitized.startswith("-"):
        sanitized = "_" + sanitized
    return sanitized
