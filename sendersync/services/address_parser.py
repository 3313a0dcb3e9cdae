"""
Sender address parsing.

Turns a raw "From" header into (display name, normalized email).

Supported forms, tried in order:
1. Display name with angle brackets: Jane Doe <jane@x.com>, "Doe, Jane" <jane@x.com>
2. Name followed by a bare address:  "Jane Doe" jane@x.com
3. Anything else: the whole header is the address, name is empty

Emails are always lowercased and trimmed.
"""

import re
from email.header import decode_header, make_header
from typing import Tuple

# Name (optionally quoted) followed by <email>
ANGLE_ADDR_PATTERN = re.compile(r'^\s*"?([^"<]*?)"?\s*<([^<>]*)>\s*$')

# Name (optionally quoted) followed by whitespace and a bare email
BARE_ADDR_PATTERN = re.compile(r'^\s*"?([^"]*?)"?\s+([^\s<>"]+@[^\s<>"]+)\s*$')


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address."""
    return (email or "").strip().lower()


def _decode_name(name: str) -> str:
    """Decode RFC 2047 encoded-words (=?UTF-8?...?=) in a display name."""
    name = name.strip()
    if "=?" not in name:
        return name
    try:
        return str(make_header(decode_header(name))).strip()
    except (UnicodeDecodeError, LookupError, ValueError):
        return name


def parse_email_address(from_header: str) -> Tuple[str, str]:
    """
    Parse a From header into (name, email).

    Args:
        from_header: Raw header value, e.g. 'Jane Doe <Jane@X.com>'

    Returns:
        Tuple of (display name, lowercased email). Name is "" when absent.

    Examples:
        >>> parse_email_address("Jane Doe <jane@x.com>")
        ('Jane Doe', 'jane@x.com')
        >>> parse_email_address("bob@Y.COM")
        ('', 'bob@y.com')
    """
    header = from_header or ""

    match = ANGLE_ADDR_PATTERN.match(header)
    if match:
        return _decode_name(match.group(1)), normalize_email(match.group(2))

    match = BARE_ADDR_PATTERN.match(header)
    if match:
        return _decode_name(match.group(1)), normalize_email(match.group(2))

    return "", normalize_email(header)


def get_domain(email: str) -> str:
    """Domain part after the last '@', or "" when there is none."""
    if "@" not in email:
        return ""
    return email.rsplit("@", 1)[1]


def normalize_domain(domain: str) -> str:
    """Normalize a user-entered domain for the block-list."""
    domain = (domain or "").strip().lower()
    # Accept "@example.com" as typed in most mail clients
    return domain.lstrip("@")
