# adaptive_chat/pattern_extractor.py
"""
Keyword and pattern heuristics applied to a rated assistant message.

Both functions are pure: same text in, same tags out.
"""
import re
from enum import Enum
from typing import List


class FeedbackRating(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"

    @classmethod
    def parse(cls, value) -> "FeedbackRating":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown feedback rating: {value!r}") from None


STOP_WORDS = frozenset({
    "the", "is", "at", "which", "on", "and", "a", "to", "are", "as", "was", "will", "be",
})

DEFAULT_KEYWORDS_PER_MESSAGE = 10

# (any-of substrings, label). Case-sensitive, checked in order, not exclusive.
POSITIVE_RULES = (
    (("explain", "how"), "provide clear explanations"),
    (("example", "for instance"), "include relevant examples"),
    (("step", "process"), "break down into steps"),
)
NEGATIVE_RULES = (
    (("I don't know", "I'm not sure"), "avoid uncertain language"),
    (("maybe", "perhaps", "possibly"), "be more definitive when possible"),
)

DETAILED_MIN_LENGTH = 200
BRIEF_MAX_LENGTH = 50

_NON_WORD = re.compile(r"[^\w\s]")


def extract_keywords(text: str, limit: int = DEFAULT_KEYWORDS_PER_MESSAGE) -> List[str]:
    """
    Lowercased topic tokens longer than 3 chars, stop words removed,
    deduplicated in first-seen order and truncated to `limit`.
    """
    if not text or not text.strip():
        return []

    words = _NON_WORD.sub("", text.lower()).split()
    out: List[str] = []
    seen = set()
    for word in words:
        if len(word) <= 3 or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        out.append(word)
        if len(out) >= limit:
            break
    return out


def derive_patterns(text: str, positive: bool) -> List[str]:
    if not text or not text.strip():
        return []

    patterns: List[str] = []
    if positive:
        for needles, label in POSITIVE_RULES:
            if any(n in text for n in needles):
                patterns.append(label)
        if len(text) > DETAILED_MIN_LENGTH:
            patterns.append("provide detailed responses")
    else:
        if len(text) < BRIEF_MAX_LENGTH:
            patterns.append("avoid overly brief responses")
        for needles, label in NEGATIVE_RULES:
            if any(n in text for n in needles):
                patterns.append(label)
    return patterns
