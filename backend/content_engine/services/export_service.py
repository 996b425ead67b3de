"""Clip export: renders an approved clip's window into its own media file."""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from content_engine.adapters.base import ClipRenderer, MediaStore
from content_engine.errors import ConcurrencyConflict, NotFoundError, ValidationError
from content_engine.models.clip import PRESERVED_CLIP_STATUSES, Clip
from content_engine.models.video import Video
from content_engine.services.clip_service import ClipService
from content_engine.services.transcript_service import TranscriptService
from content_engine.utils.captions import build_ass, build_srt, clip_words, resolve_caption_style
from content_engine.utils.clock import utcnow
from content_engine.utils.ffmpeg import resolution_for

logger = logging.getLogger(__name__)


class ClipExportService:
    """
    Keeps one rendered file per clip.

    The clip records the window and presentation the file was rendered from;
    an export is reused while those still match and re-rendered otherwise.
    """

    def __init__(self, db: AsyncSession, renderer: ClipRenderer, media_store: MediaStore):
        self.db = db
        self.renderer = renderer
        self.media_store = media_store

    async def export_clip(self, clip_id: int, company_id: Optional[str] = None, force: bool = False) -> Clip:
        """
        Render the clip with its aspect ratio and captions, unless a current export exists.

        Raises:
            NotFoundError: Unknown clip, or its video has no media
            ValidationError: Clip is not approved or scheduled
            ConcurrencyConflict: The clip changed while rendering
            ProviderError: The renderer failed
        """
        clip = await ClipService(self.db).require_clip(clip_id, company_id)
        await self.db.refresh(clip)
        if clip.status not in PRESERVED_CLIP_STATUSES:
            raise ValidationError(
                f"Clip {clip_id} is {clip.status.value}; only approved clips can be exported"
            )
        if not force and clip.export_is_current and await self.media_store.exists(clip.export_media_ref):
            return clip

        video = await self.db.get(Video, clip.video_id)
        if video is None or not video.media_ref:
            raise NotFoundError(f"Video media for clip {clip_id} not found")

        words = await TranscriptService(self.db).words_between(clip.video_id, clip.start_time, clip.end_time)
        snapshot = clip.presentation_snapshot()
        previous_ref = clip.export_media_ref
        media_ref = video.media_ref
        # No transaction stays open while ffmpeg runs
        await self.db.commit()

        new_ref = await self.renderer.render(
            media_ref,
            snapshot["start_time"],
            snapshot["end_time"],
            snapshot["aspect_ratio"],
            clip_words(words, snapshot["start_time"], snapshot["end_time"]),
            snapshot["caption_style"],
        )

        unchanged = (
            Clip.export_media_ref.is_(None) if previous_ref is None
            else Clip.export_media_ref == previous_ref
        )
        result = await self.db.execute(
            update(Clip)
            .where(Clip.id == clip_id, Clip.status.in_(PRESERVED_CLIP_STATUSES), unchanged)
            .values(export_media_ref=new_ref, export_settings=snapshot, exported_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            await self.media_store.delete(new_ref)
            current = await self.db.get(Clip, clip_id, populate_existing=True)
            if current is not None and current.export_is_current:
                return current
            raise ConcurrencyConflict(f"Clip {clip_id} was changed while rendering")

        await self.db.commit()
        if previous_ref and previous_ref != new_ref:
            await self.media_store.delete(previous_ref)

        await self.db.refresh(clip)
        logger.info(f"Exported clip {clip_id} as {new_ref} ({snapshot['aspect_ratio']}, {len(words)} words)")
        return clip


CAPTION_FORMATS = ("srt", "ass")


async def build_caption_file(
    db: AsyncSession, clip_id: int, fmt: str = "srt", company_id: Optional[str] = None
) -> str:
    """
    The clip's captions as an SRT or ASS document, timed from the clip start.

    Raises:
        NotFoundError: Unknown clip
        ValidationError: Unknown format or invalid caption style
    """
    fmt = (fmt or "").lower()
    if fmt not in CAPTION_FORMATS:
        raise ValidationError(f"Unknown caption format {fmt!r}; expected srt or ass")

    clip = await ClipService(db).require_clip(clip_id, company_id)
    try:
        style = resolve_caption_style(clip.caption_style)
    except ValueError as e:
        raise ValidationError(str(e))

    words = clip_words(
        await TranscriptService(db).words_between(clip.video_id, clip.start_time, clip.end_time),
        clip.start_time,
        clip.end_time,
    )
    if fmt == "srt":
        return build_srt(words, style.words_per_line)
    width, height = resolution_for(clip.aspect_ratio)
    return build_ass(words, style, width, height)
