"""
Unit tests for free-text plan grading: external judge and local heuristic.
"""

import pytest

from studyloop.core.errors import ExternalJudgeUnavailable
from studyloop.items.evaluator import AnswerEvaluator
from studyloop.items.plan import JudgeVerdict, heuristic_coverage

CHECKLIST = [
    "Sort the array",
    "Place pointers at both ends",
    "Move the left pointer when the sum is too small",
]

FULL_PLAN = """First, sort the array.
Place pointers at both ends of the array.
Move the left pointer right when the sum is too small, else the right one left."""

PARTIAL_PLAN = """Sort the array
Place pointers at both ends"""


class FakeJudge:
    """Judge stub recording its calls."""

    def __init__(self, verdict=None, error=None):
        self.verdict = verdict
        self.error = error
        self.calls = []

    def grade_plan(self, checklist, submitted_text):
        self.calls.append((checklist, submitted_text))
        if self.error:
            raise self.error
        return self.verdict


class TestHeuristicCoverage:
    """Local checklist probing."""

    def test_full_coverage(self):
        result = heuristic_coverage(CHECKLIST, FULL_PLAN)

        assert result.coverage == 1.0
        assert result.missing == []

    def test_partial_coverage(self):
        result = heuristic_coverage(CHECKLIST, PARTIAL_PLAN)

        assert result.coverage == pytest.approx(2 / 3)
        assert result.missing == [CHECKLIST[2]]

    def test_probe_must_sit_on_one_line(self):
        result = heuristic_coverage(["Sort the array"], "sort\nthe array")
        assert result.coverage == 0.0

    def test_stopword_only_point_uses_raw_words(self):
        result = heuristic_coverage(["to and from"], "walk to and from the store")
        assert result.coverage == 1.0

    def test_empty_checklist(self):
        assert heuristic_coverage([], FULL_PLAN).coverage == 0.0

    def test_empty_plan(self):
        assert heuristic_coverage(CHECKLIST, "").coverage == 0.0


class TestPlanEvaluation:
    """Plan grading through the dispatcher."""

    def test_heuristic_when_no_judge(self, make_item):
        verdict = AnswerEvaluator().evaluate(make_item["plan"]("p1", checklist=CHECKLIST), {"text": FULL_PLAN})

        assert verdict.correct is True
        assert verdict.feedback["source"] == "heuristic"
        assert verdict.feedback["coverage"] == 1.0

    def test_below_threshold_is_incorrect(self, make_item):
        verdict = AnswerEvaluator().evaluate(make_item["plan"]("p1", checklist=CHECKLIST), {"text": PARTIAL_PLAN})

        assert verdict.correct is False
        assert verdict.feedback["missing"] == [CHECKLIST[2]]

    def test_judge_verdict_used(self, make_item):
        judge = FakeJudge(JudgeVerdict(coverage=0.75, matched=CHECKLIST[:2], missing=CHECKLIST[2:], explanation="ok"))
        verdict = AnswerEvaluator(judge=judge).evaluate(make_item["plan"]("p1", checklist=CHECKLIST), {"text": "x"})

        assert verdict.correct is True
        assert verdict.feedback["source"] == "judge"
        assert verdict.feedback["explanation"] == "ok"
        assert judge.calls == [(CHECKLIST, "x")]

    def test_judge_coverage_clamped(self, make_item):
        judge = FakeJudge(JudgeVerdict(coverage=1.4))
        verdict = AnswerEvaluator(judge=judge).evaluate(make_item["plan"]("p1"), {"text": "x"})
        assert verdict.feedback["coverage"] == 1.0

    @pytest.mark.parametrize("error", [ExternalJudgeUnavailable("down"), RuntimeError("boom")])
    def test_judge_failure_falls_back(self, make_item, error):
        judge = FakeJudge(error=error)
        item = make_item["plan"]("p1", checklist=CHECKLIST)
        verdict = AnswerEvaluator(judge=judge).evaluate(item, {"text": FULL_PLAN})

        assert verdict.correct is True
        assert verdict.feedback["source"] == "heuristic"

    def test_empty_checklist_skips_judge(self, make_item):
        judge = FakeJudge(JudgeVerdict(coverage=1.0))
        verdict = AnswerEvaluator(judge=judge).evaluate(make_item["plan"]("p1", checklist=[]), {"text": FULL_PLAN})

        assert verdict.correct is False
        assert verdict.feedback["coverage"] == 0.0
        assert judge.calls == []

    def test_custom_threshold(self, make_item):
        evaluator = AnswerEvaluator(coverage_threshold=0.6)
        verdict = evaluator.evaluate(make_item["plan"]("p1", checklist=CHECKLIST), {"text": PARTIAL_PLAN})
        assert verdict.correct is True

    def test_deterministic(self, make_item):
        item = make_item["plan"]("p1", checklist=CHECKLIST)
        evaluator = AnswerEvaluator()
        assert evaluator.evaluate(item, {"text": PARTIAL_PLAN}) == evaluator.evaluate(item, {"text": PARTIAL_PLAN})
