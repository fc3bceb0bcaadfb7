"""
Multiple choice evaluator.

Correct iff the chosen option index equals the stored correct index.
"""

from __future__ import annotations

from . import ItemKind, register
from .base import McqBody, McqResponse, Verdict


@register(ItemKind.MCQ)
class MultipleChoiceEvaluator:
    """Evaluator for multiple choice items."""

    def validate(self, body: McqBody) -> bool:
        return 0 <= body.answer.correct_index < len(body.prompt.options)

    def check(self, body: McqBody, response: McqResponse) -> Verdict:
        correct = response.choice == body.answer.correct_index
        feedback: dict = {"correct_index": body.answer.correct_index}
        if body.answer.rationale:
            feedback["rationale"] = body.answer.rationale
        return Verdict(correct=correct, feedback=feedback)
