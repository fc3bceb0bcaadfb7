"""
Item model and shared evaluator types.

An item's prompt and answer key are modelled as one discriminated variant
per kind, so a multiple-choice body can never carry an ordering answer key
and an evaluator is never handed a body of the wrong kind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from studyloop.core.errors import MalformedPayload

from . import ItemKind

# Seconds a learner is expected to spend per kind when the item gives no hint
DEFAULT_EST_SECONDS: dict[ItemKind, int] = {
    ItemKind.MCQ: 60,
    ItemKind.FITB: 75,
    ItemKind.ORDER: 90,
    ItemKind.PLAN: 120,
    ItemKind.INSIGHT: 0,
}


def normalize_text(value: str) -> str:
    """Trim and lowercase free text for comparison."""
    return value.strip().lower()


class Difficulty(str, Enum):
    """Difficulty tier of an item."""

    EASY = "E"
    MEDIUM = "M"
    HARD = "H"


# =============================================================================
# Prompt / Answer-key Variants
# =============================================================================


class McqPrompt(BaseModel):
    stem: str
    options: list[str] = Field(min_length=2)


class McqAnswer(BaseModel):
    correct_index: int = Field(ge=0)
    rationale: str = ""


class McqBody(BaseModel):
    """Multiple choice: one correct option index."""

    kind: Literal["mcq"] = "mcq"
    prompt: McqPrompt
    answer: McqAnswer

    @model_validator(mode="after")
    def _index_in_range(self) -> McqBody:
        if self.answer.correct_index >= len(self.prompt.options):
            raise ValueError(
                f"correct_index {self.answer.correct_index} out of range "
                f"for {len(self.prompt.options)} options"
            )
        return self


class OrderPrompt(BaseModel):
    stem: str
    steps: list[str] = Field(min_length=2)


class OrderAnswer(BaseModel):
    order: list[int]
    rationale: str = ""


class OrderBody(BaseModel):
    """Ordering: the answer key is a permutation of step indices."""

    kind: Literal["order"] = "order"
    prompt: OrderPrompt
    answer: OrderAnswer

    @model_validator(mode="after")
    def _order_is_permutation(self) -> OrderBody:
        if sorted(self.answer.order) != list(range(len(self.prompt.steps))):
            raise ValueError("answer order must be a permutation of the step indices")
        return self


class FitbPrompt(BaseModel):
    stem: str
    blanks: int = Field(ge=1)
    options: list[str] | None = None


class FitbAnswer(BaseModel):
    solutions: list[list[str]]
    rationale: str = ""


class FitbBody(BaseModel):
    """Fill-in-blank: a list of accepted solutions per blank."""

    kind: Literal["fitb"] = "fitb"
    prompt: FitbPrompt
    answer: FitbAnswer

    @model_validator(mode="after")
    def _one_solution_list_per_blank(self) -> FitbBody:
        if len(self.answer.solutions) != self.prompt.blanks:
            raise ValueError(
                f"{self.prompt.blanks} blanks but {len(self.answer.solutions)} solution lists"
            )
        return self


class PlanPrompt(BaseModel):
    stem: str


class PlanAnswer(BaseModel):
    checklist: list[str]
    rationale: str = ""


class PlanBody(BaseModel):
    """Free-text plan graded by checklist coverage."""

    kind: Literal["plan"] = "plan"
    prompt: PlanPrompt
    answer: PlanAnswer


class InsightPrompt(BaseModel):
    stem: str


class InsightBody(BaseModel):
    """Non-graded informational card; carries no answer key."""

    kind: Literal["insight"] = "insight"
    prompt: InsightPrompt
    answer: None = None


ItemBody = Annotated[
    Union[McqBody, OrderBody, FitbBody, PlanBody, InsightBody],
    Field(discriminator="kind"),
]


class Item(BaseModel):
    """A study item as owned by the content store."""

    id: str
    topic: str
    body: ItemBody
    difficulty: Difficulty = Difficulty.MEDIUM
    slug: str | None = None
    tags: list[str] = Field(default_factory=list)
    est_seconds: int | None = None

    @property
    def kind(self) -> ItemKind:
        return ItemKind(self.body.kind)

    @property
    def is_graded(self) -> bool:
        return self.kind is not ItemKind.INSIGHT

    @property
    def estimated_seconds(self) -> int:
        if self.est_seconds is not None:
            return self.est_seconds
        return DEFAULT_EST_SECONDS[self.kind]


# =============================================================================
# Submitted Responses
# =============================================================================


class McqResponse(BaseModel):
    kind: Literal["mcq"] = "mcq"
    choice: int


class OrderResponse(BaseModel):
    kind: Literal["order"] = "order"
    order: list[int]


class FitbResponse(BaseModel):
    kind: Literal["fitb"] = "fitb"
    blanks: list[str]
    choice_indexes: list[int] | None = None


class PlanResponse(BaseModel):
    kind: Literal["plan"] = "plan"
    text: str


class InsightResponse(BaseModel):
    kind: Literal["insight"] = "insight"


ItemResponse = Annotated[
    Union[McqResponse, OrderResponse, FitbResponse, PlanResponse, InsightResponse],
    Field(discriminator="kind"),
]

_RESPONSE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ItemResponse)


def parse_response(kind: ItemKind, raw: Any) -> Any:
    """
    Parse a raw response payload for an item of the given kind.

    The payload may name its kind under "kind" or "type"; a declared kind
    that disagrees with the item is rejected.

    Raises:
        MalformedPayload: If the payload shape does not match the kind
    """
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise MalformedPayload(f"expected an object for a {kind.value} response, got {type(raw).__name__}")

    data = dict(raw)
    declared = data.pop("type", None) or data.get("kind")
    if declared is not None and declared != kind.value:
        raise MalformedPayload(f"{declared!r} response submitted for a {kind.value} item")
    data["kind"] = kind.value

    try:
        return _RESPONSE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise MalformedPayload(f"invalid {kind.value} response: {e.error_count()} error(s)") from e


# =============================================================================
# Evaluator Protocol
# =============================================================================


@dataclass
class Verdict:
    """Result of evaluating one response."""

    correct: bool | None
    feedback: dict[str, Any] = field(default_factory=dict)

    @property
    def graded(self) -> bool:
        return self.correct is not None


class ItemEvaluator(Protocol):
    """Protocol for per-kind answer evaluators."""

    def validate(self, body: Any) -> bool:
        """Check the answer key can be graded. Returns True if usable."""
        ...

    def check(self, body: Any, response: Any) -> Verdict:
        """Grade a parsed response against the body's answer key."""
        ...
