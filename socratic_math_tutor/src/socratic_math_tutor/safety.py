"""
Input Safety Filter

Sanitizes free-text student input and scans it for frustration vocabulary.
"""

import re

DEFAULT_MAX_LENGTH = 500

# Characters stripped from input; mathematical symbols are kept
_STRIPPED_CHARACTERS = re.compile(r"[<>{}]")
_WHITESPACE = re.compile(r"\s+")

FRUSTRATION_KEYWORDS = (
    # Direct expressions
    "i don't know",
    "i dont know",
    "i don't get it",
    "i don't understand",
    "don't understand",
    "i'm confused",
    "confused",
    "confusing",
    "this is hard",
    "this is difficult",
    "difficult",
    "i'm stuck",
    "im stuck",
    "i give up",
    "i quit",
    "help me",
    "i need help",
    # Emotional indicators
    "frustrated",
    "annoying",
    "hate this",
    # Disengagement shorthand
    "idk",
    "dunno",
    "whatever",
)


def sanitize_student_input(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """
    Normalize student input before it reaches the prompt.

    Args:
        text: Raw student message (may be empty)
        max_length: Longest message kept before truncation

    Returns:
        Trimmed, whitespace-collapsed text without <>{} characters
    """
    sanitized = _WHITESPACE.sub(" ", (text or "").strip())
    sanitized = _STRIPPED_CHARACTERS.sub("", sanitized)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def contains_frustration_keywords(text: str) -> bool:
    """True if the lower-cased text contains any frustration keyword."""
    lowered = (text or "").lower().replace("’", "'")
    return any(keyword in lowered for keyword in FRUSTRATION_KEYWORDS)
