"""Input validation utilities."""

import re
from typing import Pattern

_ACCOUNT_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,62}$")


def compile_regex(pattern: str) -> Pattern[str]:
    """Compile and validate a regex pattern.

    Args:
        pattern: Regex pattern string.

    Returns:
        Compiled regex pattern.

    Raises:
        ValueError: If pattern is invalid.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValueError(f"Invalid regex pattern '{pattern}': {str(e)}")


def matches_regex(text: str, pattern: Pattern[str]) -> bool:
    """Check if text matches regex pattern.

    Args:
        text: Text to match.
        pattern: Compiled regex pattern.

    Returns:
        True if text matches pattern.
    """
    return pattern.search(text) is not None


def validate_retention_days(days: int) -> None:
    """Validate a retention window.

    Raises:
        ValueError: If days is negative.
    """
    if days < 0:
        raise ValueError(f"Retention days must be >= 0, got {days}")


def validate_account_id(account_id: str) -> None:
    """Validate an account identifier.

    The identifier is embedded in progress and result file names, so path
    separators and other special characters are rejected.

    Raises:
        ValueError: If the identifier is empty or contains unsupported characters.
    """
    if not account_id:
        raise ValueError("Account identifier cannot be empty")

    if not _ACCOUNT_ID.match(account_id):
        raise ValueError(
            f"Invalid account identifier '{account_id}': use letters, digits, '.', '_' or '-'"
        )
