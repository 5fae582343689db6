# ABOUTME: Shared in-memory fixtures for engine tests.
# ABOUTME: Builds a small prerequisite graph, item catalog, and a BKT-only service.

from pathlib import Path

import pytest

from src.common.config import BKTConfig, BKTParams, EngineConfig
from src.common.content import InMemoryStudentDirectory, ItemCatalog
from src.common.schemas import Item, Skill
from src.common.skill_graph import SkillGraph
from src.pipeline import MonotonicClock, build_service

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def repo_root() -> Path:
    return REPO_ROOT


@pytest.fixture
def graph() -> SkillGraph:
    return SkillGraph(
        [
            Skill("count", "Counting"),
            Skill("add", "Addition", prerequisites=("count",)),
            Skill("multiply", "Multiplication", prerequisites=("add",)),
        ]
    )


@pytest.fixture
def catalog() -> ItemCatalog:
    return ItemCatalog(
        [
            Item("c1", "count", difficulty=-1.0, answer_key="3"),
            Item("c2", "count", difficulty=0.0, answer_key="5"),
            Item("a1", "add", difficulty=-0.5, answer_key="4"),
            Item("a2", "add", difficulty=0.5, answer_key=["2", "7"]),
            Item("m1", "multiply", difficulty=0.0, answer_key="12"),
            Item("old", "add", difficulty=0.0, answer_key="9", deprecated=True),
        ]
    )


@pytest.fixture
def students() -> InMemoryStudentDirectory:
    return InMemoryStudentDirectory(["alice", "bob"])


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        bkt=BKTConfig(defaults=BKTParams(prior=0.3, p_learn=0.4, p_slip=0.1, p_guess=0.2, p_forget=0.0))
    )


@pytest.fixture
def service(engine_config, graph, catalog, students):
    return build_service(
        engine_config,
        graph,
        catalog,
        students,
        use_sequence_model=False,
        clock=MonotonicClock(),
    )
