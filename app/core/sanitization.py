"""Input sanitization and validation utilities."""

import re
from typing import Optional

import bleach


# Maximum lengths for different field types
MAX_LENGTHS = {
    "name": 200,
    "email": 255,
    "asset_tag": 50,
    "description": 2000,
    "remarks": 500,
    "default": 255,
}

# Allowed characters patterns
PATTERNS = {
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    "asset_tag": re.compile(r"^[A-Z0-9][A-Z0-9\-_/]*$"),
}


def sanitize_string(
    value: Optional[str],
    max_length: int = MAX_LENGTHS["default"],
    strip_html: bool = True,
    allow_newlines: bool = False,
) -> str:
    """
    Sanitize a string input.

    - Strips leading/trailing whitespace
    - Removes or escapes HTML
    - Truncates to max length
    - Optionally removes newlines
    """
    if not value:
        return ""

    # Strip whitespace
    value = value.strip()

    # Remove HTML tags if requested
    if strip_html:
        value = bleach.clean(value, tags=[], strip=True)

    # Remove or normalize newlines
    if not allow_newlines:
        value = " ".join(value.split())

    # Truncate to max length
    if len(value) > max_length:
        value = value[:max_length]

    return value


def sanitize_name(value: str) -> str:
    """Sanitize a name field (person, device, category or brand name)."""
    return sanitize_string(value, max_length=MAX_LENGTHS["name"])


def sanitize_email(value: str) -> str:
    """Trim and lower-case an email so lookups are case-insensitive."""
    return sanitize_string(value, max_length=MAX_LENGTHS["email"], strip_html=False).lower()


def validate_email(value: str) -> bool:
    """Validate email format."""
    if not value or len(value) > MAX_LENGTHS["email"]:
        return False
    return bool(PATTERNS["email"].match(value))


def sanitize_asset_tag(value: str) -> str:
    """Upper-case an asset tag and drop anything outside the allowed characters."""
    value = sanitize_string(value, max_length=MAX_LENGTHS["asset_tag"]).upper()
    return re.sub(r"[^A-Z0-9\-_/]", "", value.replace(" ", "-"))


def validate_asset_tag(value: str) -> bool:
    if not value or len(value) > MAX_LENGTHS["asset_tag"]:
        return False
    return bool(PATTERNS["asset_tag"].match(value))


def sanitize_description(value: str) -> str:
    """Sanitize a free-text field such as notes (allows newlines)."""
    return sanitize_string(
        value,
        max_length=MAX_LENGTHS["description"],
        allow_newlines=True,
    )


def sanitize_remarks(value: str) -> str:
    """Sanitize reviewer remarks on a rejected assignment."""
    return sanitize_string(value, max_length=MAX_LENGTHS["remarks"], allow_newlines=True)
