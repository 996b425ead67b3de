"""Transcript signal arrays for virality analysis.

Turns word and segment timings into numpy arrays so windows can be sliced
with `searchsorted` instead of rescanning the transcript:
- word start/end times and texts
- pause length after each word
- segment start/end times and texts
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from content_engine.adapters.base import SegmentTiming, TranscriptionResult, WordTiming

logger = logging.getLogger(__name__)


@dataclass
class TranscriptFeatures:
    """Array view of an aligned transcript."""

    word_starts: np.ndarray
    word_ends: np.ndarray
    words: List[str]
    pauses_after: np.ndarray  # Gap between each word and the next (0 for the last)

    segment_starts: np.ndarray
    segment_ends: np.ndarray
    segment_texts: List[str]

    duration: float

    @property
    def has_speech(self) -> bool:
        return len(self.words) > 0

    def word_slice(self, start_sec: float, end_sec: float) -> slice:
        """Indices of words that start inside [start_sec, end_sec) and finish by end_sec."""
        lo = int(np.searchsorted(self.word_starts, start_sec - 1e-6, side="left"))
        hi = int(np.searchsorted(self.word_ends, end_sec + 1e-6, side="right"))
        return slice(lo, max(lo, hi))

    def text_between(self, start_sec: float, end_sec: float) -> str:
        return " ".join(self.words[self.word_slice(start_sec, end_sec)])

    def speech_seconds(self, start_sec: float, end_sec: float) -> float:
        """Seconds of the window covered by words."""
        sl = self.word_slice(start_sec, end_sec)
        if sl.stop <= sl.start:
            return 0.0
        return float(np.sum(self.word_ends[sl] - self.word_starts[sl]))


def _words_from_segments(segments: List[SegmentTiming]) -> List[WordTiming]:
    """Spread segment text evenly over its span when word timings are missing."""
    words: List[WordTiming] = []
    for seg in segments:
        tokens = seg.text.split()
        if not tokens or seg.end <= seg.start:
            continue
        step = (seg.end - seg.start) / len(tokens)
        for i, token in enumerate(tokens):
            words.append(WordTiming(token, seg.start + i * step, seg.start + (i + 1) * step))
    return words


def build_features(
    transcript: TranscriptionResult,
    video_duration: Optional[float] = None,
) -> TranscriptFeatures:
    """
    Build transcript arrays.

    Args:
        transcript: Aligned transcript (words/segments sorted by time)
        video_duration: Source duration; defaults to the transcript duration

    Returns:
        TranscriptFeatures
    """
    duration = float(video_duration or transcript.duration or 0.0)

    words = list(transcript.words) or _words_from_segments(transcript.segments)
    segments = list(transcript.segments)
    if not segments and words:
        # Treat the whole transcript as one segment
        segments = [SegmentTiming(" ".join(w.word for w in words), words[0].start, words[-1].end)]

    word_starts = np.array([w.start for w in words], dtype=float)
    word_ends = np.array([w.end for w in words], dtype=float)

    if len(words) > 1:
        pauses = np.append(np.maximum(word_starts[1:] - word_ends[:-1], 0.0), 0.0)
    else:
        pauses = np.zeros(len(words), dtype=float)

    if duration <= 0 and len(words):
        duration = float(word_ends[-1])

    logger.debug(f"Transcript features: {len(words)} words, {len(segments)} segments, {duration:.1f}s")

    return TranscriptFeatures(
        word_starts=word_starts,
        word_ends=word_ends,
        words=[w.word for w in words],
        pauses_after=pauses,
        segment_starts=np.array([s.start for s in segments], dtype=float),
        segment_ends=np.array([s.end for s in segments], dtype=float),
        segment_texts=[s.text for s in segments],
        duration=duration,
    )
