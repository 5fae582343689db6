# ABOUTME: Tests the stateless sequence tracer and its window encoding.
# ABOUTME: Checks determinism, confidence saturation, truncation, fallback, and checkpoint reload.

import pytest
import torch

from src.common.config import SequenceConfig
from src.common.errors import ConfigurationError, InsufficientHistoryError
from src.common.schemas import HistoryEntry
from src.seq_kt import SequenceTracer, build_skill_vocab, encode_window, load_checkpoint, save_checkpoint
from src.seq_kt.encoding import PAD_INDEX, UNKNOWN_INDEX, bucketize_elapsed

SKILLS = ["add", "count", "multiply"]


@pytest.fixture
def tracer() -> SequenceTracer:
    return SequenceTracer.from_config(SequenceConfig(max_window=10, confidence_saturation=4), SKILLS)


def _history(n: int):
    return [HistoryEntry(SKILLS[i % 3], float(i % 2), elapsed_time=10.0 * (i + 1)) for i in range(n)]


def test_vocab_reserves_padding_and_unknown():
    vocab = build_skill_vocab(["b", "a", "b"])
    assert vocab == {"a": 2, "b": 3}
    assert PAD_INDEX == 0 and UNKNOWN_INDEX == 1


def test_encode_window_left_pads_with_most_recent_last():
    history = [HistoryEntry("add", 1.0, 3.0), HistoryEntry("unseen", 0.5, None)]
    vocab = build_skill_vocab(SKILLS)

    batch = encode_window(history, "count", vocab, max_window=4, elapsed_edges=(5.0, 15.0))

    assert batch["skills"].tolist() == [[0, 0, vocab["add"], UNKNOWN_INDEX]]
    assert batch["correctness"].tolist() == [[0.0, 0.0, 1.0, 0.5]]
    assert batch["time_buckets"].tolist() == [[0, 0, 1, 0]]
    assert batch["padding_mask"].tolist() == [[True, True, False, False]]
    assert batch["query"].tolist() == [vocab["count"]]


def test_bucketize_elapsed_edges():
    edges = (5.0, 15.0, 30.0)
    assert bucketize_elapsed(None, edges) == 0
    assert bucketize_elapsed(1.0, edges) == 1
    assert bucketize_elapsed(5.0, edges) == 2
    assert bucketize_elapsed(400.0, edges) == 4


def test_infer_is_pure_and_deterministic(tracer):
    history = _history(6)
    first = tracer.infer(history, "add")
    second = tracer.infer(list(history), "add")
    rebuilt = SequenceTracer.from_config(SequenceConfig(max_window=10, confidence_saturation=4), SKILLS)

    assert first == second
    assert rebuilt.infer(history, "add") == first
    assert 0.0 <= first[0] <= 1.0


def test_building_the_model_leaves_global_rng_untouched():
    torch.manual_seed(123)
    expected = torch.rand(3)
    torch.manual_seed(123)
    SequenceTracer.from_config(SequenceConfig(), SKILLS)
    assert torch.equal(torch.rand(3), expected)


def test_confidence_is_monotone_and_saturates(tracer):
    values = [tracer.infer(_history(n), "add")[1] for n in range(1, 8)]
    assert values[:4] == [0.25, 0.5, 0.75, 1.0]
    assert values[4:] == [1.0, 1.0, 1.0]


def test_window_is_truncated_to_most_recent_entries(tracer):
    history = _history(25)
    assert tracer.infer(history, "count") == tracer.infer(history[-10:], "count")


def test_empty_history_raises_and_estimate_falls_back_to_prior(tracer):
    with pytest.raises(InsufficientHistoryError):
        tracer.infer([], "add")
    estimate = tracer.estimate_mastery([], "add", prior=0.3)
    assert estimate.probability == 0.3
    assert estimate.confidence == 0.0


def test_checkpoint_round_trip_preserves_predictions(tracer, tmp_path):
    path = save_checkpoint(tracer.model, tracer.skill_vocab, tmp_path / "seq.pt")
    model, vocab = load_checkpoint(path)
    reloaded = SequenceTracer(model, vocab, tracer.config)

    history = _history(7)
    assert vocab == tracer.skill_vocab
    assert not model.training
    assert reloaded.infer(history, "multiply")[0] == pytest.approx(tracer.infer(history, "multiply")[0])


def test_missing_checkpoint_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        SequenceTracer.from_config(SequenceConfig(checkpoint_path=str(tmp_path / "missing.pt")), SKILLS)


def test_model_window_must_cover_configured_window(tracer):
    with pytest.raises(ConfigurationError):
        SequenceTracer(tracer.model, tracer.skill_vocab, SequenceConfig(max_window=50))
