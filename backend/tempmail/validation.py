"""Mailbox prefix validation.

Runs before the directory is touched, so an invalid prefix never causes a
state change.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

MAX_PREFIX_LENGTH = 32
PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class PrefixValidation:
    valid: bool
    error: Optional[str] = None
    prefix: Optional[str] = None


def validate_prefix(prefix: Optional[str], blacklist: Iterable[str] = ()) -> PrefixValidation:
    """Validate a user-supplied local part.

    ``None`` is valid and means "generate a random one". Anything else is
    stripped and must be 1-32 characters of ``[A-Za-z0-9_-]`` and not a
    reserved name (compared case-insensitively).

    Returns:
        PrefixValidation: ``prefix`` holds the normalized value when valid
    """
    if prefix is None:
        return PrefixValidation(valid=True)

    if not isinstance(prefix, str):
        return PrefixValidation(valid=False, error="Email prefix must be a string")

    trimmed = prefix.strip()
    if not trimmed:
        return PrefixValidation(valid=False, error="Email prefix cannot be empty")

    if len(trimmed) > MAX_PREFIX_LENGTH:
        return PrefixValidation(
            valid=False,
            error=f"Email prefix must be {MAX_PREFIX_LENGTH} characters or less",
        )

    if trimmed.lower() in {name.lower() for name in blacklist}:
        return PrefixValidation(valid=False, error="This prefix is reserved and cannot be used")

    if not PREFIX_PATTERN.match(trimmed):
        return PrefixValidation(
            valid=False,
            error="Email prefix can only contain letters, numbers, hyphens, and underscores",
        )

    return PrefixValidation(valid=True, prefix=trimmed)
