"""
Token-budget condensation for oversized tool output.

Token counts are estimated at ~4 characters per token.  When a text exceeds its budget we keep the
beginning and the end and drop the middle, so the leading structure (totals, first hits) and the
tail of the payload both survive.
"""

import math

DEFAULT_MAX_TOKENS = 128_000
CHARS_PER_TOKEN = 4
HEADROOM_RATIO = 0.8  # keep 20% of the budget free for the rest of the prompt
CONDENSED_MARKER = "\n\n... [CONTENT CONDENSED DUE TO LENGTH] ...\n\n"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ``ceil(len(text) / 4)``."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def condense_content(content: str, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
    """
    Trim *content* to roughly *max_tokens* tokens.

    Parameters
    ----------
    content:
        Text to bound.
    max_tokens:
        Token ceiling for the returned text.

    Returns
    -------
    str
        *content* itself when within budget; otherwise its first and last
        ``floor(max_tokens * 4 * 0.8) // 2`` characters joined by
        :data:`CONDENSED_MARKER`.
    """
    if estimate_tokens(content) <= max_tokens:
        return content

    max_chars = math.floor(max_tokens * CHARS_PER_TOKEN * HEADROOM_RATIO)
    half = max_chars // 2
    if half == 0:
        return CONDENSED_MARKER

    return f"{content[:half]}{CONDENSED_MARKER}{content[-half:]}"
