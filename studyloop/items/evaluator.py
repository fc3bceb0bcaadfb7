"""
Answer evaluation dispatcher.

Routes a raw response to the evaluator registered for the item's kind.
Malformed payloads are graded incorrect rather than raised; insight items
always come back ungraded. Multiple-choice verdicts always carry a
rationale, falling back to a generic one for the item's topic.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from studyloop.content.topics import fallback_rationale
from studyloop.core.errors import MalformedPayload

from . import EVALUATORS, ItemKind
from .base import Item, ItemEvaluator, Verdict, parse_response
from .plan import DEFAULT_COVERAGE_THRESHOLD, PlanEvaluator, PlanJudge


class AnswerEvaluator:
    """Evaluates submitted responses for every item kind."""

    def __init__(
        self,
        judge: PlanJudge | None = None,
        coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD,
    ):
        """
        Initialize the evaluator set.

        Args:
            judge: External plan judge (None = heuristic grading only)
            coverage_threshold: Plan coverage needed to count as correct
        """
        self._evaluators: dict[ItemKind, ItemEvaluator] = {
            kind: cls() for kind, cls in EVALUATORS.items() if kind is not ItemKind.PLAN
        }
        self._evaluators[ItemKind.PLAN] = PlanEvaluator(
            judge=judge,
            coverage_threshold=coverage_threshold,
        )

    def evaluate(self, item: Item, payload: Any) -> Verdict:
        """
        Grade a raw payload against an item's answer key.

        Args:
            item: The item being answered
            payload: Kind-specific response (dict or parsed response model)

        Returns:
            Verdict; correct is None for insight items
        """
        if not item.is_graded:
            return Verdict(correct=None)

        try:
            response = parse_response(item.kind, payload)
        except MalformedPayload as e:
            logger.warning(f"Malformed payload for item {item.id}: {e}")
            return Verdict(correct=False, feedback={"error": "malformed_payload", "detail": str(e)})

        verdict = self._evaluators[item.kind].check(item.body, response)
        if item.kind is ItemKind.MCQ and "rationale" not in verdict.feedback:
            verdict.feedback["rationale"] = fallback_rationale(item.topic)
        return verdict
