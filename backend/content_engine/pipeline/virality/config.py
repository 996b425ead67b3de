"""Virality analyzer configuration."""
from dataclasses import dataclass, field
from typing import Dict, Optional

from .weights import DEFAULT_WEIGHTS


@dataclass
class ViralityConfig:
    """Configuration for transcript-based virality analysis."""

    # Clip duration constraints
    min_clip_seconds: float = 15.0
    max_clip_seconds: float = 60.0
    target_clip_seconds: float = 30.0  # Preferred length when boundaries tie

    # Boundary detection
    min_pause_seconds: float = 0.5  # Inter-word gap that counts as a boundary
    boundary_min_spacing_sec: float = 0.25
    max_ends_per_start: int = 3  # Best end boundaries tried per start boundary

    # Scoring
    hook_window_seconds: float = 3.0
    min_hook_score: float = 40.0
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    # Post-filtering
    overlap_policy: str = "strict"  # "strict" or "iou"
    overlap_iou_threshold: float = 0.3
    max_candidates: int = 20  # Top-K after de-duplication
    max_clips: int = 10  # Top-N returned

    # Excerpt
    excerpt_max_chars: int = 500

    @classmethod
    def from_settings(cls, settings, weights: Optional[Dict[str, float]] = None) -> "ViralityConfig":
        """Build a config from application settings."""
        return cls(
            min_clip_seconds=settings.min_clip_seconds,
            max_clip_seconds=settings.max_clip_seconds,
            min_pause_seconds=settings.min_pause_seconds,
            hook_window_seconds=settings.hook_window_seconds,
            min_hook_score=settings.min_hook_score,
            weights=dict(weights or settings.virality_weights),
            overlap_policy=settings.overlap_policy,
            overlap_iou_threshold=settings.overlap_iou_threshold,
            max_candidates=settings.max_candidates,
            max_clips=settings.max_clips,
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary for serialization."""
        return {
            "min_clip_seconds": self.min_clip_seconds,
            "max_clip_seconds": self.max_clip_seconds,
            "target_clip_seconds": self.target_clip_seconds,
            "min_pause_seconds": self.min_pause_seconds,
            "boundary_min_spacing_sec": self.boundary_min_spacing_sec,
            "max_ends_per_start": self.max_ends_per_start,
            "hook_window_seconds": self.hook_window_seconds,
            "min_hook_score": self.min_hook_score,
            "weights": dict(self.weights),
            "overlap_policy": self.overlap_policy,
            "overlap_iou_threshold": self.overlap_iou_threshold,
            "max_candidates": self.max_candidates,
            "max_clips": self.max_clips,
        }
