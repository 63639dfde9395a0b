"""Input validation helpers for GalleryStore.

These functions enforce naming rules independently of any HTTP handler so
they can be unit-tested in isolation. Each raises ``InvalidRequest`` on
invalid input.
"""

import re

from gallerystore.errors import InvalidRequest

# S3 keys are limited to 1024 bytes of UTF-8; leave room for the
# "<unixMillis>-" prefix added when the key is built.
_MAX_KEY_BYTES = 1024
_KEY_PREFIX_RESERVE = 14

_FORBIDDEN_RE = re.compile(r"[/\\\x00-\x1f\x7f]")


def validate_display_name(name: str) -> str:
    """Validate a new display filename and return it trimmed.

    The name becomes the tail of a single-segment object key, so it must
    not contain path separators or control characters.

    Args:
        name: The requested display filename.

    Returns:
        The name with surrounding whitespace removed.

    Raises:
        InvalidRequest: If the name is empty, too long, or contains a
            forbidden character.
    """
    if not isinstance(name, str):
        raise InvalidRequest("newFilename must be a string")
    trimmed = name.strip()
    if not trimmed:
        raise InvalidRequest("newFilename must not be empty")
    if trimmed in (".", ".."):
        raise InvalidRequest("newFilename is not a valid filename")
    if _FORBIDDEN_RE.search(trimmed):
        raise InvalidRequest("newFilename must not contain slashes or control characters")
    if len(trimmed.encode("utf-8")) > _MAX_KEY_BYTES - _KEY_PREFIX_RESERVE:
        raise InvalidRequest("newFilename is too long")
    return trimmed


def validate_identifier(value, field: str) -> str:
    """Return ``value`` as a non-empty string id.

    JSON clients may send numeric ids; those are accepted and stringified.

    Raises:
        InvalidRequest: If the value is missing, empty, or not a scalar.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidRequest(f"{field} must be a string")
    text = str(value).strip()
    if not text:
        raise InvalidRequest(f"{field} must not be empty")
    return text
