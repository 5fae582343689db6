# ABOUTME: Interfaces and in-memory adapters for the content service, identity layer, and answer keys.
# ABOUTME: Owns item records; only the calibrator writes difficulty/discrimination under a per-item lock.

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import yaml

from .errors import ConfigurationError, ValidationError
from .schemas import Item, Skill
from .skill_graph import SkillGraph


class ContentService(Protocol):
    def get_item(self, item_id: str) -> Optional[Item]: ...

    def items_by_skill(self, skill_id: str) -> Set[str]: ...


class StudentDirectory(Protocol):
    def exists(self, student_id: str) -> bool: ...


class Scorer(Protocol):
    def score(self, item: Item, response: Any) -> float: ...


class ItemCatalog:
    """Thread-safe in-memory content service.

    Item parameter writes go through ``update_parameters`` which holds a lock
    per item, so concurrent calibration of different items never contends.
    """

    def __init__(self, items: Iterable[Item] = ()):
        self._items: Dict[str, Item] = {}
        self._by_skill: Dict[str, Set[str]] = defaultdict(set)
        self._item_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        for item in items:
            self.add_item(item)

    def add_item(self, item: Item) -> None:
        with self._registry_lock:
            if item.item_id in self._items:
                raise ConfigurationError(f"Duplicate item id '{item.item_id}'")
            self._items[item.item_id] = item
            self._by_skill[item.skill_id].add(item.item_id)
            self._item_locks[item.item_id] = threading.Lock()

    def get_item(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def items_by_skill(self, skill_id: str) -> Set[str]:
        return set(self._by_skill.get(skill_id, set()))

    def item_ids(self) -> List[str]:
        return sorted(self._items)

    def snapshot(self) -> Dict[str, Item]:
        with self._registry_lock:
            return dict(self._items)

    def deprecate(self, item_id: str) -> Item:
        return self._write(item_id, deprecated=True)

    def update_parameters(self, item_id: str, **changes: Any) -> Item:
        """Replace calibrator-owned fields of one item atomically."""

        allowed = {"difficulty", "discrimination", "exposure_count", "calibration_low_confidence", "calibrated_at"}
        unexpected = set(changes) - allowed
        if unexpected:
            raise ValueError(f"Fields not owned by calibration: {sorted(unexpected)}")
        return self._write(item_id, **changes)

    def _write(self, item_id: str, **changes: Any) -> Item:
        lock = self._item_locks.get(item_id)
        if lock is None:
            raise KeyError(item_id)
        with lock:
            updated = replace(self._items[item_id], **changes)
            self._items[item_id] = updated
            return updated


class InMemoryStudentDirectory:
    def __init__(self, student_ids: Iterable[str] = ()):
        self._students = set(student_ids)

    def add(self, student_id: str) -> None:
        self._students.add(student_id)

    def exists(self, student_id: str) -> bool:
        return student_id in self._students

    def student_ids(self) -> List[str]:
        return sorted(self._students)


class AnswerKeyScorer:
    """Score a response against the item's answer key.

    Scalar keys are compared case-insensitively and score 1.0 or 0.0. List
    keys award partial credit equal to the fraction of matching positions.
    """

    def score(self, item: Item, response: Any) -> float:
        key = item.answer_key
        if key is None:
            raise ValidationError(f"Item {item.item_id} has no answer key")
        if isinstance(key, (list, tuple)):
            if not isinstance(response, (list, tuple)):
                raise ValidationError(f"Item {item.item_id} expects a list response")
            if not key:
                raise ValidationError(f"Item {item.item_id} has an empty answer key")
            matched = sum(1 for expected, given in zip(key, response) if _normalize(expected) == _normalize(given))
            return matched / len(key)
        if response is None:
            raise ValidationError(f"Missing response for item {item.item_id}")
        return 1.0 if _normalize(key) == _normalize(response) else 0.0


def _normalize(value: Any) -> str:
    return str(value).strip().casefold()


def load_content_fixture(path: Path) -> Tuple[SkillGraph, ItemCatalog, InMemoryStudentDirectory]:
    """Load skills, items, and students from a YAML fixture."""

    with open(path) as f:
        cfg = yaml.safe_load(f) or {}

    skills = [
        Skill(
            skill_id=str(row["id"]),
            label=str(row.get("label", row["id"])),
            prerequisites=tuple(str(p) for p in row.get("prerequisites", []) or []),
        )
        for row in cfg.get("skills", [])
    ]
    graph = SkillGraph(skills)

    items = []
    for row in cfg.get("items", []):
        skill_id = str(row["skill"])
        if skill_id not in graph:
            raise ConfigurationError(f"Item {row['id']} references unknown skill '{skill_id}'")
        items.append(
            Item(
                item_id=str(row["id"]),
                skill_id=skill_id,
                difficulty=float(row.get("difficulty", 0.0)),
                discrimination=float(row.get("discrimination", 1.0)),
                answer_key=row.get("answer"),
                content_hash=str(row.get("content_hash", "")),
                deprecated=bool(row.get("deprecated", False)),
                secondary_skills={str(k): float(v) for k, v in (row.get("secondary_skills") or {}).items()},
            )
        )
    students = InMemoryStudentDirectory(str(s) for s in cfg.get("students", []))
    return graph, ItemCatalog(items), students
