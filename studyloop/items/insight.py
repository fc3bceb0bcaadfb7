"""
Insight evaluator.

Insight cards are informational and never graded.
"""

from __future__ import annotations

from typing import Any

from . import ItemKind, register
from .base import InsightBody, Verdict


@register(ItemKind.INSIGHT)
class InsightEvaluator:
    """Evaluator for non-graded insight cards."""

    def validate(self, body: InsightBody) -> bool:
        return body.answer is None

    def check(self, body: InsightBody, response: Any) -> Verdict:
        return Verdict(correct=None)
