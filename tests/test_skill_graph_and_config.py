# ABOUTME: Tests load-time validation of the prerequisite graph and engine configuration.
# ABOUTME: Cycles, dangling prerequisites, and invalid parameters must fail before serving.

import pytest
import yaml

from src.common.config import BKTParams, engine_config_from_dict, load_engine_config
from src.common.content import load_content_fixture
from src.common.errors import ConfigurationError, SkillGraphError
from src.common.schemas import Skill
from src.common.skill_graph import SkillGraph


def test_topological_order_lists_prerequisites_first(graph):
    assert graph.skill_ids() == ["count", "add", "multiply"]
    assert graph.prerequisites("multiply") == ("add",)
    assert "add" in graph and len(graph) == 3


def test_cycle_is_rejected_at_load():
    with pytest.raises(SkillGraphError, match="cycle"):
        SkillGraph([Skill("a", prerequisites=("b",)), Skill("b", prerequisites=("a",))])


def test_unknown_and_self_prerequisites_are_rejected():
    with pytest.raises(SkillGraphError):
        SkillGraph([Skill("a", prerequisites=("ghost",))])
    with pytest.raises(SkillGraphError):
        SkillGraph([Skill("a", prerequisites=("a",))])


def test_skill_graph_error_is_a_configuration_error():
    assert issubclass(SkillGraphError, ConfigurationError)


def test_repository_config_loads(repo_root):
    config = load_engine_config(repo_root / "configs" / "engine.yaml")

    assert config.bkt.defaults == BKTParams()
    add = config.bkt.params_for("fractions.add")
    assert add.p_learn == 0.15
    assert add.prior == config.bkt.defaults.prior
    assert config.bkt.params_for("unknown.skill") == config.bkt.defaults
    assert config.sequence.elapsed_time_edges == (5, 15, 30, 60, 120, 300)
    assert config.selector.target_success == 0.7


def test_missing_sections_use_documented_defaults():
    config = engine_config_from_dict({})
    assert config.sequence.max_window == 50
    assert config.sequence.confidence_saturation == 20
    assert config.calibration.min_responses == 10
    assert config.fusion.bkt_confidence_half_point == 5.0


@pytest.mark.parametrize(
    "cfg",
    [
        {"bkt": {"defaults": {"p_slip": 0.6, "p_guess": 0.5}}},
        {"bkt": {"skills": {"add": {"p_learn": 1.2}}}},
        {"bkt": {"defaults": {"p_lern": 0.2}}},
        {"sequence": {"max_window": 0}},
        {"sequence": {"embedding_dim": 30, "num_heads": 4}},
        {"calibration": {"mastery_clip": 0.6}},
        {"selector": {"prerequisite_floor": 0.96, "mastery_ceiling": 0.95}},
        {"selector": {"target_success": 1.0}},
        {"calibration": {"difficulty_bounds": [2.0, -2.0]}},
        {"calibration": {"difficulty_bounds": [1.0]}},
        {"bkt": {"defaults": {"p_learn": "fast"}}},
        {"sequence": {"max_window": 2.5}},
        {"sequence": {"elapsed_time_edges": "5, 15"}},
    ],
)
def test_invalid_configuration_raises(cfg):
    with pytest.raises(ConfigurationError):
        engine_config_from_dict(cfg)


def test_quoted_numbers_are_coerced():
    config = engine_config_from_dict(
        {"bkt": {"defaults": {"p_learn": "0.25"}}, "sequence": {"max_window": "12"}, "selector": {"target_success": "0.65"}}
    )
    assert config.bkt.defaults.p_learn == 0.25
    assert config.sequence.max_window == 12
    assert isinstance(config.sequence.max_window, int)
    assert config.selector.target_success == 0.65


def test_demo_content_fixture_loads(repo_root):
    graph, catalog, students = load_content_fixture(repo_root / "configs" / "demo_content.yaml")

    assert graph.prerequisites("fractions.multiply") == ("fractions.add",)
    assert catalog.get_item("fa-04").deprecated
    assert catalog.get_item("dc-01").secondary_skills == {"fractions.identify": 0.3}
    assert students.exists("s-001")


def test_content_fixture_rejects_items_for_unknown_skills(tmp_path):
    path = tmp_path / "content.yaml"
    path.write_text(yaml.safe_dump({"skills": [{"id": "a"}], "items": [{"id": "q", "skill": "b"}]}))
    with pytest.raises(ConfigurationError):
        load_content_fixture(path)
