from __future__ import annotations

import re
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut ``text`` to ``max_length`` characters, marking the cut with ``suffix``."""
    if len(text) > max_length:
        return text[:max_length] + suffix
    return text


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace, then trim to max length."""
    return truncate(re.sub(r"\s+", " ", text).strip(), max_length)


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        return urlparse(url).netloc or url
    except ValueError:
        return url
