"""Boundary candidates for virality analysis.

Clips should start where a thought starts and end where a thought ends.
Start candidates come from segment starts and words that follow a pause;
end candidates come from segment ends (sentence punctuation scores highest)
and words followed by a pause.
"""
import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from .config import ViralityConfig
from .features import TranscriptFeatures

logger = logging.getLogger(__name__)

SENTENCE_END = (".", "!", "?")


@dataclass
class BoundaryCandidate:
    """A potential clip boundary point."""
    time_sec: float
    score: float  # 0-1 boundary quality
    reason: str  # "segment", "sentence", "pause"

    def to_dict(self) -> dict:
        return {
            "time_sec": self.time_sec,
            "score": self.score,
            "reason": self.reason,
        }


def _pause_strength(gap: float, min_pause: float) -> float:
    """0.4 at the minimum pause, rising to 0.8 at four times it."""
    if gap < min_pause:
        return 0.0
    return float(min(0.8, 0.4 + 0.4 * (gap - min_pause) / (3 * min_pause)))


def _dedupe(candidates: List[BoundaryCandidate], min_spacing: float) -> List[BoundaryCandidate]:
    """Keep the strongest candidate within each min_spacing cluster."""
    if not candidates:
        return []
    ordered = sorted(candidates, key=lambda b: b.time_sec)
    kept = [ordered[0]]
    for cand in ordered[1:]:
        if cand.time_sec - kept[-1].time_sec < min_spacing:
            if cand.score > kept[-1].score:
                kept[-1] = cand
        else:
            kept.append(cand)
    return kept


def find_start_boundaries(features: TranscriptFeatures, config: ViralityConfig) -> List[BoundaryCandidate]:
    """Start candidates: segment starts and words following a pause."""
    candidates = [
        BoundaryCandidate(float(t), 1.0, "segment")
        for t in features.segment_starts
    ]

    if len(features.words) > 1:
        pause_idx = np.nonzero(features.pauses_after[:-1] >= config.min_pause_seconds)[0]
        for i in pause_idx:
            strength = _pause_strength(float(features.pauses_after[i]), config.min_pause_seconds)
            candidates.append(BoundaryCandidate(float(features.word_starts[i + 1]), strength, "pause"))

    if len(features.words):
        candidates.append(BoundaryCandidate(float(features.word_starts[0]), 1.0, "segment"))

    return _dedupe(candidates, config.boundary_min_spacing_sec)


def find_end_boundaries(features: TranscriptFeatures, config: ViralityConfig) -> List[BoundaryCandidate]:
    """End candidates: segment ends and words followed by a pause."""
    candidates = []
    for t, text in zip(features.segment_ends, features.segment_texts):
        if text.rstrip().endswith(SENTENCE_END):
            candidates.append(BoundaryCandidate(float(t), 1.0, "sentence"))
        else:
            candidates.append(BoundaryCandidate(float(t), 0.7, "segment"))

    if len(features.words):
        pause_idx = np.nonzero(features.pauses_after >= config.min_pause_seconds)[0]
        for i in pause_idx:
            strength = _pause_strength(float(features.pauses_after[i]), config.min_pause_seconds)
            if features.words[i].rstrip().endswith(SENTENCE_END):
                strength = max(strength, 0.9)
            candidates.append(BoundaryCandidate(float(features.word_ends[i]), strength, "pause"))
        candidates.append(BoundaryCandidate(float(features.word_ends[-1]), 0.8, "pause"))

    return _dedupe(candidates, config.boundary_min_spacing_sec)
