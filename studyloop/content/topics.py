"""
Topic naming.

URLs and CLI arguments use slugs ("two-pointers"); stored items carry the
display name ("Two Pointers"). Unknown topics pass through unchanged.
"""

from __future__ import annotations

TOPIC_ALIASES: dict[str, str] = {
    "two-pointers": "Two Pointers",
    "sliding-window": "Sliding Window",
    "binary-search": "Binary Search",
    "dynamic-programming": "Dynamic Programming",
}


def normalize_topic(topic: str) -> str:
    """Map a topic slug to its stored display name."""
    key = topic.strip()
    return TOPIC_ALIASES.get(key.lower(), key)


# Shown with multiple-choice feedback when the item has no rationale of its own
TOPIC_RATIONALES: dict[str, str] = {
    "Two Pointers": "Two pointers eliminate impossible combinations by moving inward from both ends.",
    "Sliding Window": "A sliding window keeps a subarray property by expanding and contracting its boundaries.",
    "Binary Search": "Binary search discards half of the remaining sorted range on every step.",
    "Hashing": "Hash maps give constant-time lookups for complements and frequency counts.",
}
DEFAULT_RATIONALE = "This pattern narrows the search space the problem needs to explore."


def fallback_rationale(topic: str) -> str:
    """Generic explanation for a topic's multiple-choice items."""
    return TOPIC_RATIONALES.get(normalize_topic(topic), DEFAULT_RATIONALE)
