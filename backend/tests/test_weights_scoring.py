"""Tests for virality weights, the composite score and sub-score heuristics."""
import pytest

from content_engine.errors import ValidationError
from content_engine.pipeline.virality.scoring import (
    cta_score,
    emotion_score,
    hook_score,
    insight_score,
    quality_score,
)
from content_engine.pipeline.virality.weights import (
    DEFAULT_WEIGHTS,
    WEIGHT_PRESETS,
    composite_score,
    resolve_weights,
    validate_weights,
)
from content_engine.pipeline.virality.windows import ClipWindow


# =============================================================================
# Weights
# =============================================================================

def test_default_weights_are_equal_and_sum_to_one():
    assert set(DEFAULT_WEIGHTS.values()) == {0.2}
    assert sum(DEFAULT_WEIGHTS.values()) == pytest.approx(1.0)


@pytest.mark.parametrize("weights,message", [
    ({"hook": 0.5, "emotion": 0.5, "insight": 0, "cta": 0, "quality": 0, "reach": 0}, "Unknown"),
    ({"hook": 0.5, "emotion": 0.5}, "Missing"),
    ({"hook": 1.2, "emotion": -0.2, "insight": 0, "cta": 0, "quality": 0}, "non-negative"),
    ({"hook": 0.3, "emotion": 0.3, "insight": 0.3, "cta": 0.3, "quality": 0.3}, "sum to 1"),
    ({"hook": "lots", "emotion": 0.5, "insight": 0.5, "cta": 0, "quality": 0}, "number"),
])
def test_invalid_weights_raise(weights, message):
    with pytest.raises(ValidationError, match=message):
        validate_weights(weights)


def test_resolve_weights_prefers_overrides_then_preset():
    overrides = {"hook": 1.0, "emotion": 0, "insight": 0, "cta": 0, "quality": 0}
    assert resolve_weights(overrides, preset="engagement")["hook"] == 1.0
    assert resolve_weights(None, preset="engagement") == WEIGHT_PRESETS["engagement"]
    assert resolve_weights() == DEFAULT_WEIGHTS


def test_resolve_weights_unknown_preset():
    with pytest.raises(ValidationError):
        resolve_weights(preset="clickbait")


# =============================================================================
# Composite
# =============================================================================

def test_composite_is_weighted_sum_rounded():
    subscores = {"hook": 90, "emotion": 50, "insight": 60, "cta": 60, "quality": 85}
    # 0.2 * 345 = 69.0
    assert composite_score(subscores, DEFAULT_WEIGHTS) == 69


def test_composite_rounds_halves_up():
    weights = WEIGHT_PRESETS["engagement"]
    # 0.25*52 + 0.25*50 + 0.2*50 + 0.15*50 + 0.15*50 = 50.5
    subscores = {"hook": 52, "emotion": 50, "insight": 50, "cta": 50, "quality": 50}
    assert composite_score(subscores, weights) == 51

    # 50.25 rounds down
    subscores["hook"] = 51
    assert composite_score(subscores, weights) == 50


def test_composite_extremes():
    assert composite_score({d: 0 for d in DEFAULT_WEIGHTS}, DEFAULT_WEIGHTS) == 0
    assert composite_score({d: 100 for d in DEFAULT_WEIGHTS}, DEFAULT_WEIGHTS) == 100


# =============================================================================
# Sub-scores
# =============================================================================

def test_hook_score_rewards_questions_and_hook_words():
    assert hook_score("") == 0
    assert hook_score("the meeting went on as planned") == 30
    assert hook_score("Why do you never hear the truth") == 85
    assert hook_score("Stop! 3 mistakes you make") == 30 + 20 + 10 + 10 + 10


def test_emotion_score_neutral_and_registers():
    assert emotion_score("we met on tuesday") == 50
    assert emotion_score("that was hilarious") == 90
    # humor plus surprise: strongest register plus 2 per extra register, plus 5 for "!"
    assert emotion_score("hilarious and shocking!") == 90 + 2 + 5


def test_insight_and_cta_scores():
    assert insight_score("we talked", 10.0) == 60
    assert insight_score("step 1 of the framework", 30.0) == 60 + 20 + 10 + 10
    assert cta_score("nothing to see") == 60
    assert cta_score("share this if you disagree") == 60 + 15 + 20
    assert cta_score("share this if you disagree, we all do") == 100


def test_quality_score_prefers_clean_sweet_spot_windows():
    text = " ".join(["word"] * 40) + "."
    good = ClipWindow(0.0, 30.0, 1.0, 1.0, "segment", "sentence")
    ragged = ClipWindow(0.0, 95.0, 0.0, 0.0, "hard_cut", "hard_cut")

    assert quality_score(good, text, 25.0) == 100
    assert quality_score(ragged, "trailing", 10.0) < quality_score(good, text, 25.0)
