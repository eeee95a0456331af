"""Character-based token estimates used for context budgets."""

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count, about four characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_chars(text: str, max_chars: int) -> str:
    """
    Cut text to at most max_chars characters.

    Prefers to end at a sentence or line break when one falls in the last
    30% of the allowed length.
    """
    if len(text) <= max_chars:
        return text
    if max_chars <= 0:
        return ""

    truncated = text[:max_chars]
    break_point = max(truncated.rfind("."), truncated.rfind("\n"))
    if break_point > max_chars * 0.7:
        return truncated[: break_point + 1]
    return truncated
