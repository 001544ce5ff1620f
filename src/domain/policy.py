"""
Email domain policy - pure predicates over email addresses.
"""

import re
from collections.abc import Iterable

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")


def normalize_email(email: str) -> str:
    """Strip whitespace and lowercase."""
    return email.strip().lower()


def is_valid_format(email: str) -> bool:
    """ASCII local-part @ domain containing at least one dot."""
    return _EMAIL_PATTERN.fullmatch(email) is not None


def is_approved_domain(email: str, approved: Iterable[str]) -> bool:
    """
    Exact, case-insensitive match of the text after the final '@'.

    No subdomain or suffix matching: 'notacme.com' and 'mail.acme.com'
    are both distinct from 'acme.com'.
    """
    local, sep, domain = email.rpartition("@")
    if not sep or not local or not domain:
        return False
    domain = domain.lower()
    return any(domain == candidate.strip().lower() for candidate in approved)
