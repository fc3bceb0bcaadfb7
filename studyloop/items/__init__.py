"""
Item kinds and their answer evaluators.

Each item kind (multiple choice, ordering, fill-in-blank, plan, insight)
has its own module with an evaluator class exposing:
- validate(): Check the item's answer key is usable
- check(): Grade a parsed response against the answer key
"""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import ItemEvaluator


class ItemKind(str, Enum):
    """Supported item kinds."""
    MCQ = "mcq"
    ORDER = "order"
    FITB = "fitb"
    PLAN = "plan"
    INSIGHT = "insight"


# Evaluator registry - populated by @register decorator
EVALUATORS: dict[ItemKind, type["ItemEvaluator"]] = {}


def register(kind: ItemKind):
    """Decorator to register an evaluator class for an item kind."""
    def decorator(cls):
        EVALUATORS[kind] = cls
        return cls
    return decorator


def get_evaluator_class(kind: str | ItemKind) -> "type[ItemEvaluator] | None":
    """Get the evaluator class for an item kind."""
    if isinstance(kind, str) and not isinstance(kind, ItemKind):
        try:
            kind = ItemKind(kind.lower())
        except ValueError:
            return None
    return EVALUATORS.get(kind)


# Import evaluators to trigger registration
from . import mcq
from . import ordering
from . import fill_blank
from . import plan
from . import insight

__all__ = [
    "EVALUATORS",
    "ItemKind",
    "get_evaluator_class",
    "register",
]
