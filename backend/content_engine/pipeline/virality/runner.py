"""Virality analysis runner.

Orchestrates the stages of transcript-based clip proposal.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from content_engine.adapters.base import Candidate, TranscriptionResult, ViralityAnalyzer

from .boundaries import find_end_boundaries, find_start_boundaries
from .config import ViralityConfig
from .features import TranscriptFeatures, build_features
from .post_filters import FilterDecision, ScoredWindow, filter_weak_hooks, select_top_k
from .scoring import score_window
from .titles import HeuristicTitleWriter
from .weights import composite_score, resolve_weights
from .windows import generate_windows

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Complete result of one analysis run."""
    selected: List[ScoredWindow]
    decisions: List[FilterDecision] = field(default_factory=list)
    window_count: int = 0
    elapsed_sec: float = 0.0


def rank_windows(
    features: TranscriptFeatures,
    config: ViralityConfig,
    weights: Dict[str, float],
    avoid: Optional[List[Tuple[float, float]]] = None,
) -> AnalysisResult:
    """
    Run the synchronous scoring stages.

    Stages:
    1. Boundary detection
    2. Candidate window generation
    3. Sub-scores and composite per window
    4. Hook gate
    5. Top-K non-overlapping selection, then the top-N cut
    """
    t_start = time.time()

    starts = find_start_boundaries(features, config)
    ends = find_end_boundaries(features, config)

    windows = generate_windows(features, starts, ends, config)

    scored = []
    for window in windows:
        subscores = score_window(window, features, config)
        scored.append(ScoredWindow(window, subscores, composite_score(subscores, weights)))

    hooked, hook_decisions = filter_weak_hooks(scored, config)
    kept, rank_decisions = select_top_k(hooked, config, avoid=avoid)

    return AnalysisResult(
        selected=kept[:config.max_clips],
        decisions=hook_decisions + rank_decisions,
        window_count=len(windows),
        elapsed_sec=time.time() - t_start,
    )


class TranscriptViralityAnalyzer(ViralityAnalyzer):
    """Proposes clip windows from an aligned transcript."""

    def __init__(self, config: Optional[ViralityConfig] = None, title_writer=None):
        self.config = config or ViralityConfig()
        self.title_writer = title_writer or HeuristicTitleWriter()

    async def analyze(
        self,
        transcript: TranscriptionResult,
        media_ref: Optional[str],
        weights: Optional[Dict[str, float]] = None,
        video_duration: Optional[float] = None,
        avoid: Optional[List[tuple]] = None,
    ) -> List[Candidate]:
        """
        Analyze a transcript and return ranked candidates.

        Args:
            transcript: Aligned transcript
            media_ref: Source media (unused by the transcript scorer)
            weights: Complete weight vector overriding the configured one
            video_duration: Source duration; windows never extend past it
            avoid: (start, end) spans of clips that must not be overlapped

        Returns:
            Candidates, best first
        """
        resolved = resolve_weights(weights, base=self.config.weights)

        features = build_features(transcript, video_duration)
        if not features.has_speech:
            logger.info("Transcript has no speech; no candidates")
            return []

        result = rank_windows(features, self.config, resolved, avoid=avoid)
        logger.info(
            f"Virality analysis: {result.window_count} windows -> {len(result.selected)} candidates "
            f"in {result.elapsed_sec:.2f}s"
        )

        candidates = []
        for item in result.selected:
            excerpt = features.text_between(item.start_sec, item.end_sec)
            title, description = await self.title_writer.write(excerpt)
            candidates.append(Candidate(
                start_time=item.start_sec,
                end_time=item.end_sec,
                subscores=dict(item.subscores),
                virality_score=item.composite,
                ai_title=title,
                ai_description=description,
                transcript_excerpt=excerpt[:self.config.excerpt_max_chars],
            ))
        return candidates
