# Virality analysis - transcript-based clip proposal
"""
Virality Analysis: Transcript-Based Clip Proposal

Proposes short-form clip windows from an aligned transcript and scores them
on five fixed dimensions (hook, emotion, insight, cta, quality).

Pipeline stages:
1. Features: numpy arrays over word and segment timings
2. Boundaries: sentence ends, segment edges and pauses
3. Windows: start/end pairs inside the clip duration bounds
4. Scoring: five sub-scores and a weighted composite
5. Post-filtering: hook gate, non-overlapping top-K, top-N

All modules work on the transcript only; titles optionally come from a chat model.
"""

__version__ = "1.0.0"

from .config import ViralityConfig
from .runner import TranscriptViralityAnalyzer
from .weights import DIMENSIONS, DEFAULT_WEIGHTS, composite_score, validate_weights

__all__ = [
    "TranscriptViralityAnalyzer",
    "ViralityConfig",
    "DIMENSIONS",
    "DEFAULT_WEIGHTS",
    "composite_score",
    "validate_weights",
    "__version__",
]
