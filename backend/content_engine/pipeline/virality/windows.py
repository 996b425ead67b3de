"""Candidate window generation.

Pairs every start boundary with the best end boundaries that give a duration
inside [min_clip_seconds, max_clip_seconds]. Candidates may overlap here;
post_filters resolves that after scoring.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .boundaries import BoundaryCandidate
from .config import ViralityConfig
from .features import TranscriptFeatures

logger = logging.getLogger(__name__)


@dataclass
class ClipWindow:
    """A candidate clip window."""
    start_sec: float
    end_sec: float
    start_boundary_score: float
    end_boundary_score: float
    start_reason: str  # How start was selected
    end_reason: str    # How end was selected

    @property
    def duration(self) -> float:
        return self.end_sec - self.start_sec

    @property
    def boundary_quality(self) -> float:
        return (self.start_boundary_score + self.end_boundary_score) / 2

    def to_dict(self) -> dict:
        return {
            "start_sec": self.start_sec,
            "end_sec": self.end_sec,
            "duration": self.duration,
            "start_boundary_score": self.start_boundary_score,
            "end_boundary_score": self.end_boundary_score,
            "start_reason": self.start_reason,
            "end_reason": self.end_reason,
        }


def hard_cut_window(
    features: TranscriptFeatures,
    config: ViralityConfig,
    limit: float,
) -> Optional[ClipWindow]:
    """
    Fallback window when no boundary pair fits the duration bounds.

    Starts at the first word and runs to the last word, stretched or cut to
    the duration bounds and clamped to the video.
    """
    if limit < config.min_clip_seconds or not features.has_speech:
        return None

    start = float(features.word_starts[0])
    end = max(float(features.word_ends[-1]), start + config.min_clip_seconds)
    end = min(end, start + config.max_clip_seconds, limit)

    if end - start < config.min_clip_seconds:
        start = max(0.0, end - config.min_clip_seconds)
    if end - start < config.min_clip_seconds:
        return None

    return ClipWindow(
        start_sec=start,
        end_sec=end,
        start_boundary_score=0.0,
        end_boundary_score=0.0,
        start_reason="hard_cut",
        end_reason="hard_cut",
    )


def generate_windows(
    features: TranscriptFeatures,
    starts: List[BoundaryCandidate],
    ends: List[BoundaryCandidate],
    config: ViralityConfig,
) -> List[ClipWindow]:
    """
    Generate candidate windows.

    Args:
        features: Transcript arrays
        starts: Start boundary candidates
        ends: End boundary candidates (sorted by time)
        config: Analyzer configuration

    Returns:
        List of ClipWindow, every one within the duration bounds and the video
    """
    if not features.has_speech:
        return []

    limit = features.duration if features.duration > 0 else float(features.word_ends[-1])
    end_times = np.array([b.time_sec for b in ends], dtype=float)

    windows: List[ClipWindow] = []
    for start in starts:
        lo = int(np.searchsorted(end_times, start.time_sec + config.min_clip_seconds, side="left"))
        hi = int(np.searchsorted(
            end_times, min(start.time_sec + config.max_clip_seconds, limit), side="right"
        ))
        if hi <= lo:
            continue

        options = sorted(
            ends[lo:hi],
            key=lambda b: (-b.score, abs((b.time_sec - start.time_sec) - config.target_clip_seconds)),
        )
        for end in options[:config.max_ends_per_start]:
            windows.append(ClipWindow(
                start_sec=start.time_sec,
                end_sec=end.time_sec,
                start_boundary_score=start.score,
                end_boundary_score=end.score,
                start_reason=start.reason,
                end_reason=end.reason,
            ))

    if not windows:
        fallback = hard_cut_window(features, config, limit)
        if fallback is not None:
            logger.info("No boundary pair fits the duration bounds; using hard cut")
            windows.append(fallback)

    logger.info(f"Generated {len(windows)} candidate windows from {len(starts)} starts")
    return windows
