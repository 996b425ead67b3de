"""Transcript persistence and lookup."""
import logging
from typing import List, Optional, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from content_engine.adapters.base import SegmentTiming, TranscriptionResult, WordTiming
from content_engine.errors import NotFoundError
from content_engine.models.clip import Clip
from content_engine.models.transcript import TranscriptSegment, TranscriptWord, VideoTranscript
from content_engine.models.video import Video

logger = logging.getLogger(__name__)

Timing = TypeVar("Timing", WordTiming, SegmentTiming)


def clean_timings(items: Sequence[Timing], duration: Optional[float]) -> List[Timing]:
    """
    Enforce ordered, non-overlapping timings inside [0, duration].

    Items are sorted by start, clamped to the duration, trimmed so each starts
    no earlier than the previous one ends, and dropped if nothing is left.
    """
    cleaned: List[Timing] = []
    prev_end = 0.0
    for item in sorted(items, key=lambda t: (t.start, t.end)):
        start = max(0.0, float(item.start), prev_end)
        end = float(item.end)
        if duration is not None and duration > 0:
            end = min(end, duration)
        if end <= start:
            continue
        if isinstance(item, WordTiming):
            cleaned.append(WordTiming(item.word, start, end))
        else:
            cleaned.append(SegmentTiming(item.text, start, end))
        prev_end = end
    return cleaned


class TranscriptService:
    """Service for transcript operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save_transcript(
        self,
        video_id: int,
        result: TranscriptionResult,
        video_duration: Optional[float] = None,
    ) -> VideoTranscript:
        """
        Replace the video's transcript with a cleaned copy of `result`.

        Does not commit; the caller owns the transaction.
        """
        duration = video_duration or result.duration
        words = clean_timings(result.words, duration)
        segments = clean_timings(result.segments, duration)

        existing = await self.db.execute(
            select(VideoTranscript).where(VideoTranscript.video_id == video_id)
        )
        old = existing.scalar_one_or_none()
        if old is not None:
            await self.db.delete(old)
            await self.db.flush()

        transcript = VideoTranscript(
            video_id=video_id,
            full_text=result.full_text or " ".join(s.text for s in segments),
            language=result.language,
            duration=duration,
        )
        self.db.add(transcript)
        await self.db.flush()

        self.db.add_all([
            TranscriptWord(
                transcript_id=transcript.id, position=i,
                word=w.word[:255], start_time=w.start, end_time=w.end,
            )
            for i, w in enumerate(words)
        ])
        self.db.add_all([
            TranscriptSegment(
                transcript_id=transcript.id, position=i,
                text=s.text, start_time=s.start, end_time=s.end,
            )
            for i, s in enumerate(segments)
        ])

        dropped = (len(result.words) - len(words)) + (len(result.segments) - len(segments))
        if dropped:
            logger.warning(f"Video {video_id}: dropped {dropped} out-of-range or overlapping timings")

        return transcript

    async def get_transcript(self, video_id: int) -> Optional[VideoTranscript]:
        """Transcript with words and segments loaded."""
        result = await self.db.execute(
            select(VideoTranscript)
            .where(VideoTranscript.video_id == video_id)
            .options(selectinload(VideoTranscript.words), selectinload(VideoTranscript.segments))
        )
        return result.scalar_one_or_none()

    async def load_result(self, video_id: int) -> Optional[TranscriptionResult]:
        """Stored transcript as a TranscriptionResult for the analyzer."""
        transcript = await self.get_transcript(video_id)
        if transcript is None:
            return None
        return TranscriptionResult(
            full_text=transcript.full_text,
            language=transcript.language,
            duration=transcript.duration,
            words=[WordTiming(w.word, w.start_time, w.end_time) for w in transcript.words],
            segments=[SegmentTiming(s.text, s.start_time, s.end_time) for s in transcript.segments],
        )

    async def words_between(self, video_id: int, start: float, end: float) -> List[WordTiming]:
        """Stored words fully inside [start, end], in order."""
        result = await self.db.execute(
            select(TranscriptWord.word, TranscriptWord.start_time, TranscriptWord.end_time)
            .join(VideoTranscript, TranscriptWord.transcript_id == VideoTranscript.id)
            .where(
                VideoTranscript.video_id == video_id,
                TranscriptWord.start_time >= start,
                TranscriptWord.end_time <= end,
            )
            .order_by(TranscriptWord.position)
        )
        return [WordTiming(row.word, row.start_time, row.end_time) for row in result]

    async def get_clip_transcript(self, clip_id: int, company_id: Optional[str] = None) -> dict:
        """
        Words and segments inside a clip, with times relative to the clip start.

        Raises:
            NotFoundError: Clip, video or transcript missing
        """
        clip = await self.db.get(Clip, clip_id)
        if not clip:
            raise NotFoundError(f"Clip {clip_id} not found")
        video = await self.db.get(Video, clip.video_id)
        if not video or (company_id is not None and video.company_id != company_id):
            raise NotFoundError(f"Clip {clip_id} not found")

        transcript = await self.get_transcript(clip.video_id)
        if transcript is None:
            raise NotFoundError(f"Video {clip.video_id} has no transcript")

        words = [
            w for w in transcript.words
            if w.start_time >= clip.start_time and w.end_time <= clip.end_time
        ]
        segments = [
            s for s in transcript.segments
            if s.end_time > clip.start_time and s.start_time < clip.end_time
        ]
        return {
            "clip_id": clip.id,
            "video_id": clip.video_id,
            "start_time": clip.start_time,
            "end_time": clip.end_time,
            "text": " ".join(w.word for w in words),
            "words": [w.to_dict(offset=clip.start_time) for w in words],
            "segments": [
                {
                    "text": s.text,
                    "start_time": round(max(s.start_time, clip.start_time) - clip.start_time, 3),
                    "end_time": round(min(s.end_time, clip.end_time) - clip.start_time, 3),
                }
                for s in segments
            ],
        }
