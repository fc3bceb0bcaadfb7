"""
Content loader for item definition files.

A content file is JSON: either a list of items or an object with an
"items" list. Each item uses the discriminated body format:

    {"id": "tp-001", "topic": "two-pointers", "difficulty": "E",
     "body": {"kind": "mcq",
              "prompt": {"stem": "...", "options": ["...", "..."]},
              "answer": {"correct_index": 1}}}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from studyloop.delivery.repository import StudyRepository
from studyloop.items import get_evaluator_class
from studyloop.items.base import Item

from .topics import normalize_topic


def _raw_items(data: Any) -> list[Any]:
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise ValueError("Content file must hold a list of items or an object with an 'items' list")
    return data


def parse_items(data: Any, strict: bool = False) -> list[Item]:
    """
    Validate raw item definitions.

    Args:
        data: Decoded JSON content
        strict: Raise on the first invalid item instead of skipping it

    Returns:
        Valid items, topics normalized to display names
    """
    items: list[Item] = []
    seen: set[str] = set()
    for index, raw in enumerate(_raw_items(data)):
        try:
            item = Item.model_validate(raw)
        except ValidationError as e:
            if strict:
                raise
            logger.warning(f"Skipping item #{index}: {e.error_count()} validation error(s)")
            continue

        evaluator_cls = get_evaluator_class(item.kind)
        if evaluator_cls is not None and not evaluator_cls().validate(item.body):
            message = f"Item {item.id} has an unusable answer key"
            if strict:
                raise ValueError(message)
            logger.warning(f"Skipping item: {message}")
            continue

        if item.id in seen:
            logger.warning(f"Duplicate item id {item.id}; keeping the last definition")
            items = [existing for existing in items if existing.id != item.id]
        seen.add(item.id)
        items.append(item.model_copy(update={"topic": normalize_topic(item.topic)}))
    return items


def load_items(path: Path | str, strict: bool = False) -> list[Item]:
    """Load and validate items from a JSON file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Content file not found: {path}")
    data = json.loads(path.read_text(encoding="utf-8"))
    return parse_items(data, strict=strict)


def import_items(repo: StudyRepository, path: Path | str, strict: bool = False) -> int:
    """
    Upsert the items in a content file into the repository.

    Returns:
        Number of items written
    """
    items = load_items(path, strict=strict)
    with repo.transaction():
        count = repo.upsert_items(items)
    logger.info(f"Imported {count} items from {path}")
    return count
