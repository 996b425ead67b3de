"""Post-processing filters for virality analysis.

Handles the hook gate, overlap resolution and the top-K cut.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import ViralityConfig
from .windows import ClipWindow

logger = logging.getLogger(__name__)


@dataclass
class ScoredWindow:
    """A window with its sub-scores and composite."""
    window: ClipWindow
    subscores: dict
    composite: int

    @property
    def start_sec(self) -> float:
        return self.window.start_sec

    @property
    def end_sec(self) -> float:
        return self.window.end_sec


@dataclass
class FilterDecision:
    """Records why a window was kept or dropped."""
    start_sec: float
    end_sec: float
    action: str  # "keep", "drop_hook", "drop_overlap", "drop_preserved", "drop_rank"
    reason: str

    def to_dict(self) -> dict:
        return {
            "start_sec": self.start_sec,
            "end_sec": self.end_sec,
            "action": self.action,
            "reason": self.reason,
        }


def compute_iou(a_start: float, a_end: float, b_start: float, b_end: float) -> float:
    """Compute Intersection over Union for two time windows."""
    intersection = max(0.0, min(a_end, b_end) - max(a_start, b_start))
    union = (a_end - a_start) + (b_end - b_start) - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def windows_overlap(
    a_start: float,
    a_end: float,
    b_start: float,
    b_end: float,
    policy: str = "strict",
    iou_threshold: float = 0.3,
) -> bool:
    """
    Overlap test under the configured policy.

    strict: any positive intersection overlaps (touching windows do not).
    iou: overlap when IoU exceeds the threshold.
    """
    if policy == "iou":
        return compute_iou(a_start, a_end, b_start, b_end) > iou_threshold
    return min(a_end, b_end) - max(a_start, b_start) > 1e-9


def filter_weak_hooks(
    scored: List[ScoredWindow],
    config: ViralityConfig,
) -> Tuple[List[ScoredWindow], List[FilterDecision]]:
    """Drop windows whose hook score is below the gate."""
    kept, decisions = [], []
    for item in scored:
        if item.subscores["hook"] < config.min_hook_score:
            decisions.append(FilterDecision(
                item.start_sec, item.end_sec, "drop_hook",
                f"Hook {item.subscores['hook']} < {config.min_hook_score}",
            ))
        else:
            kept.append(item)
    logger.info(f"Hook gate: {len(scored)} -> {len(kept)} windows")
    return kept, decisions


def select_top_k(
    scored: List[ScoredWindow],
    config: ViralityConfig,
    avoid: Optional[Iterable[Tuple[float, float]]] = None,
) -> Tuple[List[ScoredWindow], List[FilterDecision]]:
    """
    Keep the top-K non-overlapping windows.

    Greedy selection by composite score descending, ties broken by earlier
    start. Windows overlapping any `avoid` span (clips that must be
    preserved) are dropped.
    """
    avoid = list(avoid or [])
    ordered = sorted(scored, key=lambda s: (-s.composite, s.start_sec, s.end_sec))

    kept: List[ScoredWindow] = []
    decisions: List[FilterDecision] = []
    for item in ordered:
        if any(
            windows_overlap(item.start_sec, item.end_sec, a_start, a_end,
                            config.overlap_policy, config.overlap_iou_threshold)
            for a_start, a_end in avoid
        ):
            decisions.append(FilterDecision(
                item.start_sec, item.end_sec, "drop_preserved", "Overlaps a preserved clip"
            ))
            continue

        if any(
            windows_overlap(item.start_sec, item.end_sec, k.start_sec, k.end_sec,
                            config.overlap_policy, config.overlap_iou_threshold)
            for k in kept
        ):
            decisions.append(FilterDecision(
                item.start_sec, item.end_sec, "drop_overlap", "Overlaps a higher-ranked window"
            ))
            continue

        if len(kept) >= config.max_candidates:
            decisions.append(FilterDecision(
                item.start_sec, item.end_sec, "drop_rank", f"Below top {config.max_candidates}"
            ))
            continue

        kept.append(item)
        decisions.append(FilterDecision(item.start_sec, item.end_sec, "keep", "Selected"))

    logger.info(f"Overlap resolution: {len(scored)} -> {len(kept)} windows")
    return kept, decisions
