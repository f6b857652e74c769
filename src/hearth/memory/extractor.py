"""Name detection in user messages."""

import re

_NAME = r"([A-Za-zÀ-ÖØ-öø-ÿ][A-Za-zÀ-ÖØ-öø-ÿ'\-]{0,30}(?:\s+[A-Z][A-Za-zÀ-ÖØ-öø-ÿ'\-]{0,30})?)"

EXPLICIT_PATTERNS = [
    re.compile(r"\bmy name(?:'s| is)\s+" + _NAME, re.IGNORECASE),
    re.compile(r"\bcall me\s+" + _NAME, re.IGNORECASE),
]

# "I'm X" only counts when X is capitalized, otherwise "I'm tired" would match.
INTRO_PATTERN = re.compile(r"\b(?:I'm|I am|Im)\s+([A-Z][A-Za-zÀ-ÖØ-öø-ÿ'\-]{1,30})\b")

NOT_NAMES = {
    "a", "an", "the", "not", "so", "just", "here", "back", "fine", "good",
    "ok", "okay", "sorry", "sure", "tired", "happy", "sad", "new", "from",
    "going", "trying", "looking", "still", "really", "very", "in", "at",
}


def _clean(candidate: str) -> str | None:
    words = candidate.strip(" .,!?;:'\"-").split()
    if not words or words[0].casefold() in NOT_NAMES:
        return None
    # A trailing lowercase word is sentence text, not a surname.
    if len(words) > 1 and not words[1][:1].isupper():
        words = words[:1]
    name = " ".join(words)
    return name[:1].upper() + name[1:]


def extract_name(message: str, *, explicit_only: bool = False) -> str | None:
    """Find a self-introduced name in a message.

    Args:
        message: The user's message.
        explicit_only: Ignore the loose "I'm X" form. Set when a name is
            already known, so "I'm Starving" can't replace it.

    Returns:
        The name, or None if the message doesn't introduce the user.
    """
    for pattern in EXPLICIT_PATTERNS:
        match = pattern.search(message)
        if match:
            return _clean(match.group(1))

    if explicit_only:
        return None
    match = INTRO_PATTERN.search(message)
    if match:
        return _clean(match.group(1))
    return None


def name_fact(name: str) -> str:
    """The durable fact recorded when a name is learned."""
    return f"Name is {name}"


def is_name_fact(fact: str) -> bool:
    return fact.casefold().startswith(name_fact("").casefold())
