"""
Ordering evaluator.

The learner submits a permutation of step indices. Only an exact match is
correct; on a mismatch the first diverging position is reported so the UI
can point at it.
"""

from __future__ import annotations

from . import ItemKind, register
from .base import OrderBody, OrderResponse, Verdict


def first_mismatch(submitted: list[int], expected: list[int]) -> int | None:
    """Index of the first position where the sequences differ, or None if equal."""
    for i, (got, want) in enumerate(zip(submitted, expected)):
        if got != want:
            return i
    if len(submitted) != len(expected):
        return min(len(submitted), len(expected))
    return None


@register(ItemKind.ORDER)
class OrderingEvaluator:
    """Evaluator for step-ordering items."""

    def validate(self, body: OrderBody) -> bool:
        return sorted(body.answer.order) == list(range(len(body.prompt.steps)))

    def check(self, body: OrderBody, response: OrderResponse) -> Verdict:
        expected = body.answer.order
        mismatch = first_mismatch(response.order, expected)
        feedback: dict = {"first_mismatch": mismatch}
        if body.answer.rationale:
            feedback["rationale"] = body.answer.rationale
        return Verdict(correct=mismatch is None, feedback=feedback)
