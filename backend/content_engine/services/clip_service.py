"""Clip service layer: clip storage and the review state machine."""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from content_engine.adapters.base import Candidate, MediaStore
from content_engine.config import settings
from content_engine.errors import ConcurrencyConflict, NotFoundError, ValidationError
from content_engine.models.clip import (
    ASPECT_RATIOS,
    PRESERVED_CLIP_STATUSES,
    REPLACEABLE_CLIP_STATUSES,
    Clip,
    ClipStatus,
)
from content_engine.models.video import Video
from content_engine.services.transcript_service import TranscriptService
from content_engine.utils.captions import resolve_caption_style
from content_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = {
    "approved": ClipStatus.APPROVED,
    "approve": ClipStatus.APPROVED,
    "rejected": ClipStatus.REJECTED,
    "reject": ClipStatus.REJECTED,
}

# Float slack when checking bounds of stored windows
BOUNDS_EPSILON = 1e-6


def parse_decision(decision) -> ClipStatus:
    if isinstance(decision, ClipStatus) and decision in (ClipStatus.APPROVED, ClipStatus.REJECTED):
        return decision
    status = REVIEW_DECISIONS.get(str(getattr(decision, "value", decision)).lower())
    if status is None:
        raise ValidationError(f"Invalid review decision: {decision!r}")
    return status


def candidate_within_bounds(
    candidate: Candidate,
    video_duration: Optional[float],
    min_seconds: float,
    max_seconds: float,
) -> bool:
    """0 <= start < end <= duration and min <= end - start <= max."""
    if candidate.start_time < 0 or candidate.end_time <= candidate.start_time:
        return False
    if video_duration is not None and candidate.end_time > video_duration + BOUNDS_EPSILON:
        return False
    duration = candidate.end_time - candidate.start_time
    return min_seconds - BOUNDS_EPSILON <= duration <= max_seconds + BOUNDS_EPSILON


class ClipService:
    """Service for clip operations."""

    def __init__(self, db: AsyncSession, media_store: Optional[MediaStore] = None):
        self.db = db
        self.media_store = media_store

    async def get_clip(self, clip_id: int, company_id: Optional[str] = None) -> Optional[Clip]:
        """Get a clip by ID, optionally scoped to a company."""
        clip = await self.db.get(Clip, clip_id)
        if clip is None or company_id is None:
            return clip
        video = await self.db.get(Video, clip.video_id)
        if video is None or video.company_id != company_id:
            return None
        return clip

    async def require_clip(self, clip_id: int, company_id: Optional[str] = None) -> Clip:
        clip = await self.get_clip(clip_id, company_id)
        if not clip:
            raise NotFoundError(f"Clip {clip_id} not found")
        return clip

    async def list_clips(
        self,
        video_id: int,
        status: Optional[ClipStatus] = None,
        company_id: Optional[str] = None,
    ) -> List[Clip]:
        """List clips for a video, best first."""
        video = await self.db.get(Video, video_id)
        if not video or (company_id is not None and video.company_id != company_id):
            raise NotFoundError(f"Video {video_id} not found")

        query = select(Clip).where(Clip.video_id == video_id)
        if status is not None:
            query = query.where(Clip.status == ClipStatus(status))
        result = await self.db.execute(
            query.order_by(Clip.virality_score.desc(), Clip.start_time)
        )
        return list(result.scalars().all())

    async def review_clip(self, clip_id: int, decision, company_id: Optional[str] = None) -> Clip:
        """
        Approve or reject a pending clip.

        Repeating the decision a clip already carries is a no-op.

        Raises:
            NotFoundError: Unknown clip
            ValidationError: Clip is not pending review
            ConcurrencyConflict: Another reviewer changed the clip first
        """
        new_status = parse_decision(decision)
        clip = await self.require_clip(clip_id, company_id)

        if clip.status == new_status:
            return clip
        if clip.status != ClipStatus.PENDING_REVIEW:
            raise ValidationError(
                f"Clip {clip_id} is {clip.status.value}; only pending_review clips can be reviewed"
            )

        now = utcnow()
        result = await self.db.execute(
            update(Clip)
            .where(Clip.id == clip_id, Clip.status == ClipStatus.PENDING_REVIEW)
            .values(status=new_status, reviewed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConcurrencyConflict(f"Clip {clip_id} was changed concurrently")

        await self.db.commit()
        await self.db.refresh(clip)
        logger.info(f"Clip {clip_id} {new_status.value}")
        return clip

    async def review_clips(
        self,
        clip_ids: Iterable[int],
        decision,
        company_id: Optional[str] = None,
    ) -> dict:
        """
        Review several clips; clips that cannot be reviewed are reported, not raised.

        Returns:
            {"updated": [ids], "skipped": [{"id", "reason"}]}
        """
        parse_decision(decision)
        updated, skipped = [], []
        for clip_id in dict.fromkeys(clip_ids):
            try:
                await self.review_clip(clip_id, decision, company_id)
                updated.append(clip_id)
            except (NotFoundError, ValidationError, ConcurrencyConflict) as e:
                skipped.append({"id": clip_id, "reason": str(e)})
        return {"updated": updated, "skipped": skipped}

    async def update_clip_presentation(
        self,
        clip_id: int,
        aspect_ratio: Optional[str] = None,
        caption_style: Optional[dict] = None,
        ai_title: Optional[str] = None,
        ai_description: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Clip:
        """
        Update how a clip is presented. Scores are never editable.
        """
        clip = await self.require_clip(clip_id, company_id)

        if aspect_ratio is not None:
            if aspect_ratio not in ASPECT_RATIOS:
                raise ValidationError(
                    f"Invalid aspect ratio {aspect_ratio}; expected one of {', '.join(ASPECT_RATIOS)}"
                )
            clip.aspect_ratio = aspect_ratio

        if caption_style is not None:
            try:
                resolve_caption_style(caption_style)
            except ValueError as e:
                raise ValidationError(str(e))
            clip.caption_style = caption_style

        if ai_title is not None:
            if not ai_title.strip():
                raise ValidationError("Title cannot be empty")
            clip.ai_title = ai_title.strip()[:255]

        if ai_description is not None:
            clip.ai_description = ai_description

        await self.db.commit()
        await self.db.refresh(clip)
        return clip

    async def update_clip_timeline(
        self,
        clip_id: int,
        start_time: float,
        end_time: float,
        company_id: Optional[str] = None,
    ) -> Clip:
        """
        Move a clip's window. Only clips still open to review can be re-timed;
        a rejected clip goes back to pending_review.

        Raises:
            NotFoundError: Unknown clip
            ValidationError: Clip is approved or scheduled, or the window is out of bounds
            ConcurrencyConflict: The clip was reviewed or scheduled meanwhile
        """
        clip = await self.require_clip(clip_id, company_id)
        if clip.status not in REPLACEABLE_CLIP_STATUSES:
            raise ValidationError(f"Clip {clip_id} is {clip.status.value}; its window can no longer change")

        start_time, end_time = float(start_time), float(end_time)
        if start_time < 0 or end_time <= start_time:
            raise ValidationError("End time must be greater than start time")
        video = await self.db.get(Video, clip.video_id)
        if video is not None and video.duration is not None:
            if end_time > video.duration + BOUNDS_EPSILON:
                raise ValidationError(f"End time is past the end of the video ({video.duration:.1f}s)")
            end_time = min(end_time, video.duration)
        duration = end_time - start_time
        if not settings.min_clip_seconds - BOUNDS_EPSILON <= duration <= settings.max_clip_seconds + BOUNDS_EPSILON:
            raise ValidationError(
                f"Clip duration must be between {settings.min_clip_seconds:.0f}s "
                f"and {settings.max_clip_seconds:.0f}s"
            )

        words = await TranscriptService(self.db).words_between(clip.video_id, start_time, end_time)
        result = await self.db.execute(
            update(Clip)
            .where(Clip.id == clip_id, Clip.status.in_(REPLACEABLE_CLIP_STATUSES))
            .values(
                start_time=start_time,
                end_time=end_time,
                duration=duration,
                transcript_excerpt=" ".join(w.word for w in words)[:500] or None,
                status=ClipStatus.PENDING_REVIEW,
                reviewed_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConcurrencyConflict(f"Clip {clip_id} was changed concurrently")

        await self.db.commit()
        await self.db.refresh(clip)
        logger.info(f"Clip {clip_id} re-timed to {start_time:.2f}-{end_time:.2f}")
        return clip

    async def duplicate_clip(
        self,
        clip_id: int,
        title: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Clip:
        """Copy a clip's window, scores and presentation into a new pending_review clip."""
        original = await self.require_clip(clip_id, company_id)
        if title is not None and not title.strip():
            raise ValidationError("Title cannot be empty")
        new_title = title.strip() if title else f"{original.ai_title or 'Clip'} (Copy)"

        copy = Clip(
            video_id=original.video_id,
            start_time=original.start_time,
            end_time=original.end_time,
            duration=original.duration,
            virality_score=original.virality_score,
            virality_hook=original.virality_hook,
            virality_emotion=original.virality_emotion,
            virality_insight=original.virality_insight,
            virality_cta=original.virality_cta,
            virality_quality=original.virality_quality,
            aspect_ratio=original.aspect_ratio,
            caption_style=original.caption_style,
            ai_title=new_title[:255],
            ai_description=original.ai_description,
            transcript_excerpt=original.transcript_excerpt,
            status=ClipStatus.PENDING_REVIEW,
        )
        self.db.add(copy)
        await self.db.commit()
        await self.db.refresh(copy)
        logger.info(f"Clip {clip_id} duplicated as {copy.id}")
        return copy

    async def delete_clip(self, clip_id: int, company_id: Optional[str] = None) -> bool:
        """Delete a clip and invalidate scheduled posts that reference it."""
        from content_engine.services.scheduling_service import SchedulingService

        clip = await self.get_clip(clip_id, company_id)
        if not clip:
            return False

        export_ref = clip.export_media_ref
        await SchedulingService(self.db).invalidate_posts_for_clips([clip_id])
        await self.db.execute(delete(Clip).where(Clip.id == clip_id))
        await self.db.commit()
        if export_ref and self.media_store is not None:
            await self.media_store.delete(export_ref)
        logger.info(f"Deleted clip {clip_id}")
        return True

    async def mark_scheduled(self, clip: Clip, scheduled_for: datetime) -> None:
        """
        Move an approved clip to scheduled. Does not commit.

        A clip that is already scheduled keeps that status and records the
        earliest scheduled time.
        """
        earliest = scheduled_for
        if clip.scheduled_for is not None and clip.scheduled_for < scheduled_for:
            earliest = clip.scheduled_for

        result = await self.db.execute(
            update(Clip)
            .where(Clip.id == clip.id, Clip.status.in_(PRESERVED_CLIP_STATUSES))
            .values(status=ClipStatus.SCHEDULED, scheduled_for=earliest, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"Clip {clip.id} is no longer approved")

    async def preserved_windows(self, video_id: int) -> List[Tuple[float, float]]:
        """(start, end) of clips that re-analysis must keep."""
        result = await self.db.execute(
            select(Clip.start_time, Clip.end_time)
            .where(Clip.video_id == video_id, Clip.status.in_(PRESERVED_CLIP_STATUSES))
        )
        return [(row.start_time, row.end_time) for row in result]

    async def replace_candidates(
        self,
        video_id: int,
        candidates: List[Candidate],
        video_duration: Optional[float],
        min_seconds: Optional[float] = None,
        max_seconds: Optional[float] = None,
    ) -> List[Clip]:
        """
        Swap the replaceable clips of a video for a new candidate set. Does not commit.

        Only pending_review and rejected clips are deleted; approved and
        scheduled clips are never touched. Candidates outside the clip bounds
        are skipped.
        """
        min_seconds = settings.min_clip_seconds if min_seconds is None else min_seconds
        max_seconds = settings.max_clip_seconds if max_seconds is None else max_seconds

        await self.db.execute(
            delete(Clip)
            .where(Clip.video_id == video_id, Clip.status.in_(REPLACEABLE_CLIP_STATUSES))
            .execution_options(synchronize_session=False)
        )

        clips = []
        for candidate in candidates:
            if not candidate_within_bounds(candidate, video_duration, min_seconds, max_seconds):
                logger.warning(
                    f"Video {video_id}: skipping out-of-bounds candidate "
                    f"{candidate.start_time:.2f}-{candidate.end_time:.2f}"
                )
                continue
            end_time = candidate.end_time
            if video_duration is not None:
                end_time = min(end_time, video_duration)
            clips.append(Clip(
                video_id=video_id,
                start_time=candidate.start_time,
                end_time=end_time,
                duration=end_time - candidate.start_time,
                virality_score=candidate.virality_score,
                virality_hook=candidate.subscores["hook"],
                virality_emotion=candidate.subscores["emotion"],
                virality_insight=candidate.subscores["insight"],
                virality_cta=candidate.subscores["cta"],
                virality_quality=candidate.subscores["quality"],
                ai_title=(candidate.ai_title or "")[:255] or None,
                ai_description=candidate.ai_description,
                transcript_excerpt=candidate.transcript_excerpt,
                status=ClipStatus.PENDING_REVIEW,
            ))

        self.db.add_all(clips)
        await self.db.flush()
        return clips
