import re
from typing import Optional


def excerpt(text: Optional[str], max_chars: int, suffix: str = "...") -> str:
    """First max_chars characters of text, with suffix appended only when cut."""
    text = text or ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + suffix


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def format_money(amount: Optional[float]) -> str:
    if not amount:
        return "Unknown"
    return f"${amount:,.0f}"
