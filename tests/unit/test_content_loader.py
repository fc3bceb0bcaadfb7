"""
Unit tests for content file loading and import.
"""

import json

import pytest
from pydantic import ValidationError

from studyloop.content.loader import import_items, load_items, parse_items
from studyloop.content.topics import normalize_topic
from studyloop.items import ItemKind


def _mcq(item_id, topic="two-pointers", correct_index=0):
    return {
        "id": item_id,
        "topic": topic,
        "difficulty": "E",
        "body": {
            "kind": "mcq",
            "prompt": {"stem": "Where do the pointers start?", "options": ["ends", "middle"]},
            "answer": {"correct_index": correct_index},
        },
    }


def _plan(item_id, checklist):
    return {
        "id": item_id,
        "topic": "Two Pointers",
        "body": {"kind": "plan", "prompt": {"stem": "Plan it"}, "answer": {"checklist": checklist}},
    }


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("two-pointers", "Two Pointers"),
        ("  Sliding-Window ", "Sliding Window"),
        ("binary-search", "Binary Search"),
        ("Graphs", "Graphs"),
    ],
)
def test_normalize_topic(raw, expected):
    assert normalize_topic(raw) == expected


class TestParseItems:

    def test_list_and_wrapped_forms(self):
        assert len(parse_items([_mcq("a")])) == 1
        assert len(parse_items({"items": [_mcq("a"), _mcq("b")]})) == 2

    def test_topics_are_normalized(self):
        (item,) = parse_items([_mcq("a")])
        assert item.topic == "Two Pointers"
        assert item.kind is ItemKind.MCQ

    def test_invalid_items_skipped(self):
        items = parse_items([_mcq("a"), {"id": "broken"}, _mcq("c", correct_index=7), _plan("p", [])])
        assert [item.id for item in items] == ["a"]

    def test_strict_raises_on_schema_error(self):
        with pytest.raises(ValidationError):
            parse_items([_mcq("a"), {"id": "broken"}], strict=True)

    def test_strict_raises_on_unusable_answer_key(self):
        with pytest.raises(ValueError, match="unusable answer key"):
            parse_items([_plan("p", [])], strict=True)

    def test_duplicate_ids_keep_last(self):
        items = parse_items([_mcq("a", correct_index=0), _mcq("b"), _mcq("a", correct_index=1)])

        assert [item.id for item in items] == ["b", "a"]
        assert items[1].body.answer.correct_index == 1

    def test_rejects_other_shapes(self):
        with pytest.raises(ValueError):
            parse_items({"questions": []})


class TestFiles:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_items(tmp_path / "missing.json")

    def test_import_upserts(self, tmp_path, repo):
        path = tmp_path / "items.json"
        path.write_text(json.dumps({"items": [_mcq("a"), _mcq("b")]}), encoding="utf-8")

        assert import_items(repo, path) == 2
        assert repo.get_item("a").topic == "Two Pointers"

        path.write_text(json.dumps([_mcq("a", topic="Binary Search")]), encoding="utf-8")
        assert import_items(repo, path) == 1
        assert repo.get_item("a").topic == "Binary Search"
