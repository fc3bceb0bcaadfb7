"""
Free-text plan evaluator.

Plans are graded by checklist coverage. The external judge is asked first;
if it is missing or fails, a deterministic local heuristic takes over:

- The plan is split into normalized lines
- Each checklist point is reduced to a probe of its first few significant words
- A point is covered if any line contains its probe

Either way the plan is correct when coverage reaches the threshold.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from . import ItemKind, register
from .base import PlanBody, PlanResponse, Verdict

DEFAULT_COVERAGE_THRESHOLD = 0.70
PROBE_WORDS = 3

_WORD_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({
    "a", "an", "and", "as", "at", "be", "by", "for", "from", "if", "in", "into",
    "is", "it", "its", "of", "on", "or", "so", "that", "the", "then", "this",
    "to", "up", "we", "with", "you", "your",
})


@dataclass
class JudgeVerdict:
    """Coverage assessment of a plan against its checklist."""

    coverage: float
    matched: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    explanation: str | None = None


class PlanJudge(Protocol):
    """External grader for free-text plans (usually a network service)."""

    def grade_plan(self, checklist: list[str], submitted_text: str) -> JudgeVerdict:
        ...


# =============================================================================
# Local Heuristic
# =============================================================================


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def _significant(words: list[str]) -> list[str]:
    return [w for w in words if w not in _STOPWORDS]


def _contains_phrase(line: list[str], probe: list[str]) -> bool:
    if not probe:
        return False
    return f" {' '.join(probe)} " in f" {' '.join(line)} "


def heuristic_coverage(checklist: list[str], text: str) -> JudgeVerdict:
    """Grade a plan locally by probing each line for each checklist point."""
    lines = [_words(line) for line in text.splitlines()]
    lines = [line for line in lines if line]
    significant_lines = [_significant(line) for line in lines]

    matched: list[str] = []
    missing: list[str] = []
    for point in checklist:
        words = _words(point)
        probe = _significant(words)[:PROBE_WORDS]
        if probe:
            covered = any(_contains_phrase(line, probe) for line in significant_lines)
        else:
            # Point made only of stopwords; probe the raw words instead
            covered = any(_contains_phrase(line, words[:PROBE_WORDS]) for line in lines)
        (matched if covered else missing).append(point)

    coverage = len(matched) / len(checklist) if checklist else 0.0
    return JudgeVerdict(coverage=coverage, matched=matched, missing=missing)


# =============================================================================
# Evaluator
# =============================================================================


@register(ItemKind.PLAN)
class PlanEvaluator:
    """Evaluator for free-text plan items."""

    def __init__(
        self,
        judge: PlanJudge | None = None,
        coverage_threshold: float = DEFAULT_COVERAGE_THRESHOLD,
    ):
        self.judge = judge
        self.coverage_threshold = coverage_threshold

    def validate(self, body: PlanBody) -> bool:
        return bool(body.answer.checklist)

    def check(self, body: PlanBody, response: PlanResponse) -> Verdict:
        checklist = body.answer.checklist
        result, source = self._assess(checklist, response.text)

        coverage = min(1.0, max(0.0, result.coverage))
        feedback = {
            "coverage": coverage,
            "matched": result.matched,
            "missing": result.missing,
            "source": source,
        }
        if result.explanation:
            feedback["explanation"] = result.explanation
        if body.answer.rationale:
            feedback["rationale"] = body.answer.rationale

        return Verdict(correct=coverage >= self.coverage_threshold, feedback=feedback)

    def _assess(self, checklist: list[str], text: str) -> tuple[JudgeVerdict, str]:
        if self.judge is not None and checklist:
            try:
                return self.judge.grade_plan(checklist, text), "judge"
            except Exception as e:  # Intentionally broad - judge failure is never fatal
                logger.warning(f"Plan judge failed, using local heuristic: {e}")
        return heuristic_coverage(checklist, text), "heuristic"
