"""
Fill-in-blank evaluator.

Each blank accepts any of its listed solutions (trimmed, case-insensitive).
The item is correct only when every blank is. A submission with the wrong
number of blanks is incorrect and gets no per-blank feedback.
"""

from __future__ import annotations

from . import ItemKind, register
from .base import FitbBody, FitbResponse, Verdict, normalize_text


@register(ItemKind.FITB)
class FillBlankEvaluator:
    """Evaluator for fill-in-blank items."""

    def validate(self, body: FitbBody) -> bool:
        return len(body.answer.solutions) == body.prompt.blanks and all(body.answer.solutions)

    def check(self, body: FitbBody, response: FitbResponse) -> Verdict:
        solutions = body.answer.solutions
        rationale = {"rationale": body.answer.rationale} if body.answer.rationale else {}
        if len(response.blanks) != len(solutions):
            return Verdict(correct=False, feedback=rationale)

        ok = [
            normalize_text(submitted) in {normalize_text(s) for s in accepted}
            for submitted, accepted in zip(response.blanks, solutions)
        ]
        return Verdict(
            correct=all(ok),
            feedback={"ok": ok, "accepted": solutions, **rationale},
        )
