"""Name similarity scoring between commerce customers and CRM contacts.

The score is advisory: it sets review priority for a phone-matched pair
and never decides whether two records match.

Supports:
- Exact match (after case-folding and punctuation removal)
- Token containment (first name only vs. full name, abbreviated tokens)
- Token order swaps ("Smith John" vs. "John Smith")
- Levenshtein similarity for spelling variants

Usage:
    matcher = NameMatcher()
    matcher.score("John Smith", "john")             # 80
    matcher.score_order_customer("Jon Smith", "John", "Smith")
"""

import re
from typing import Optional


# Score for names where one token list is contained in the other
CONTAINMENT_SCORE = 80

# Shortest token accepted as an abbreviation of a longer token
MIN_PREFIX_LENGTH = 3

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    """Case-fold, drop punctuation and collapse whitespace."""
    if not name:
        return ""
    normalized = _PUNCTUATION.sub("", name.casefold())
    return _WHITESPACE.sub(" ", normalized).strip()


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein edit distance between two strings.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Edit distance (number of operations to transform s1 to s2)
    """
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def string_similarity(s1: str, s2: str) -> int:
    """Edit-distance similarity scaled to 0-100."""
    if s1 == s2:
        return 100
    if not s1 or not s2:
        return 0
    max_len = max(len(s1), len(s2))
    distance = levenshtein_distance(s1, s2)
    return round((1 - distance / max_len) * 100)


class NameMatcher:
    """Scores the similarity of two free-text person names.

    Deterministic and side-effect free; safe to share between callers.
    """

    def __init__(
        self,
        containment_score: int = CONTAINMENT_SCORE,
        min_prefix_length: int = MIN_PREFIX_LENGTH,
    ):
        self.containment_score = containment_score
        self.min_prefix_length = min_prefix_length

    def score(self, name_a: Optional[str], name_b: Optional[str]) -> int:
        """Return a similarity score in [0, 100]."""
        norm_a = normalize_name(name_a)
        norm_b = normalize_name(name_b)

        if not norm_a or not norm_b:
            return 0
        if norm_a == norm_b:
            return 100

        tokens_a = norm_a.split(" ")
        tokens_b = norm_b.split(" ")

        best = max(
            string_similarity(norm_a, norm_b),
            string_similarity(" ".join(sorted(tokens_a)), " ".join(sorted(tokens_b))),
        )

        if self._contained(tokens_a, tokens_b) or self._contained(tokens_b, tokens_a):
            best = max(best, self.containment_score)

        return max(0, min(100, best))

    def score_order_customer(
        self,
        conversation_name: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
    ) -> int:
        """Score a CRM display name against a commerce customer's name parts.

        Tries the full name, the reversed order and the first name alone,
        and keeps the best score.
        """
        parts = [p for p in (first_name, last_name) if p and p.strip()]
        if not parts:
            return 0

        candidates = [" ".join(parts), " ".join(reversed(parts))]
        if first_name and first_name.strip():
            candidates.append(first_name)

        return max(self.score(conversation_name, candidate) for candidate in candidates)

    def _contained(self, shorter: list[str], longer: list[str]) -> bool:
        """True when every token of ``shorter`` matches a distinct token of ``longer``."""
        if len(shorter) > len(longer):
            return False

        remaining = list(longer)
        for token in shorter:
            hit = None
            for candidate in remaining:
                if token == candidate or (
                    len(token) >= self.min_prefix_length and candidate.startswith(token)
                ):
                    hit = candidate
                    break
            if hit is None:
                return False
            remaining.remove(hit)
        return True


_default = NameMatcher()


def name_similarity(name_a: Optional[str], name_b: Optional[str]) -> int:
    """Similarity score in [0, 100] between two names."""
    return _default.score(name_a, name_b)


def order_name_similarity(
    conversation_name: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
) -> int:
    """Best similarity between a CRM display name and an order's customer name."""
    return _default.score_order_customer(conversation_name, first_name, last_name)


__all__ = [
    "CONTAINMENT_SCORE",
    "NameMatcher",
    "levenshtein_distance",
    "name_similarity",
    "normalize_name",
    "order_name_similarity",
    "string_similarity",
]
