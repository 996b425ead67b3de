"""Stage handlers for the video pipeline."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from content_engine.adapters.base import (
    DownloadAdapter,
    MediaProber,
    MediaStore,
    TranscriptionAdapter,
    TranscriptionResult,
    ViralityAnalyzer,
)
from content_engine.errors import (
    ConcurrencyConflict,
    PermanentProviderError,
    ProviderError,
    StageError,
    TransientProviderError,
    UnsupportedMediaError,
    VideoDeletedError,
)
from content_engine.models.pipeline_stage import StageName
from content_engine.models.video import FailureReason, Video, VideoStatus
from content_engine.pipeline.virality.post_filters import windows_overlap
from content_engine.services.clip_service import ClipService
from content_engine.services.transcript_service import TranscriptService
from content_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def transition_video(
    session: AsyncSession,
    video_id: int,
    from_statuses: Iterable[VideoStatus],
    to_status: VideoStatus,
    values: Optional[dict] = None,
) -> bool:
    """
    Conditionally move a video to `to_status`. Does not commit.

    Returns False when the video is gone or no longer in one of `from_statuses`.
    """
    changes = {Video.status: to_status, Video.updated_at: utcnow()}
    changes.update(values or {})
    result = await session.execute(
        update(Video)
        .where(Video.id == video_id, Video.status.in_(list(from_statuses)))
        .values(changes)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def load_video(session: AsyncSession, video_id: int) -> Video:
    video = await session.get(Video, video_id, populate_existing=True)
    if video is None:
        raise VideoDeletedError(f"Video {video_id} was deleted")
    return video


def supersede_media(metadata: dict, old_ref: Optional[str]) -> None:
    """Record a replaced media ref in the video metadata so deletion can remove it."""
    if not old_ref:
        return
    metadata.setdefault("original_media_ref", old_ref)
    superseded = list(metadata.get("superseded_media_refs") or [])
    if old_ref not in superseded:
        superseded.append(old_ref)
    metadata["superseded_media_refs"] = superseded


class StageHandlers:
    """
    One coroutine per pipeline stage.

    Each handler reads what it needs, calls its collaborator outside any
    transaction, then persists the result together with the status change.
    The video is looked up again right before every external call and right
    before persisting, so a deleted video stops the stage.
    """

    def __init__(
        self,
        session_factory,
        media_store: MediaStore,
        downloader: DownloadAdapter,
        prober: MediaProber,
        transcriber: TranscriptionAdapter,
        analyzer: ViralityAnalyzer,
        settings,
    ):
        self.session_factory = session_factory
        self.media_store = media_store
        self.downloader = downloader
        self.prober = prober
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.settings = settings

    def for_stage(self, stage: StageName) -> Callable[[int], Awaitable[None]]:
        handlers: Dict[StageName, Callable[[int], Awaitable[None]]] = {
            StageName.DOWNLOAD: self.download,
            StageName.VALIDATE: self.validate,
            StageName.TRANSCRIBE: self.transcribe,
            StageName.ANALYZE: self.analyze,
        }
        return handlers[stage]

    async def _ensure_exists(self, video_id: int) -> Video:
        async with self.session_factory() as session:
            return await load_video(session, video_id)

    async def _with_retries(self, video_id: int, label: str, call: Callable[[], Awaitable]):
        """Retry transient provider errors with exponential backoff."""
        max_attempts = max(1, self.settings.provider_max_attempts)
        attempt = 0
        while True:
            attempt += 1
            await self._ensure_exists(video_id)
            try:
                return await call()
            except TransientProviderError as e:
                if attempt >= max_attempts:
                    raise
                delay = self.settings.provider_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Video {video_id}: {label} attempt {attempt}/{max_attempts} failed ({e}); "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    # ── download ─────────────────────────────────────────────

    async def download(self, video_id: int) -> None:
        """Import the remote source and move the video to processing."""
        video = await self._ensure_exists(video_id)
        if not video.source_url:
            raise StageError(FailureReason.DOWNLOAD_ERROR, "No source URL provided")

        try:
            result = await self._with_retries(
                video_id, "download", lambda: self.downloader.import_from_url(video.source_url)
            )
        except ProviderError as e:
            raise StageError(FailureReason.DOWNLOAD_ERROR, f"Download failed: {e}")

        async with self.session_factory() as session:
            try:
                current = await load_video(session, video_id)
            except VideoDeletedError:
                await self.media_store.delete(result.media_ref)
                raise

            metadata = dict(current.metadata_json or {})
            if result.title:
                metadata["download_title"] = result.title

            moved = await transition_video(
                session, video_id, [VideoStatus.DOWNLOADING], VideoStatus.PROCESSING,
                {
                    Video.media_ref: result.media_ref,
                    Video.duration: result.duration,
                    Video.name: current.name or result.title,
                    Video.metadata_json: metadata,
                },
            )
            if not moved:
                await session.rollback()
                await self.media_store.delete(result.media_ref)
                raise ConcurrencyConflict(f"Video {video_id} left downloading during import")
            await session.commit()

        logger.info(f"Video {video_id}: downloaded to {result.media_ref}")

    # ── validate ─────────────────────────────────────────────

    async def validate(self, video_id: int) -> None:
        """Probe the stored media, normalizing it once if it cannot be read."""
        video = await self._ensure_exists(video_id)
        if not video.media_ref:
            raise StageError(FailureReason.INVALID_MEDIA, "Video has no stored media")

        media_ref = video.media_ref
        try:
            info = await self.prober.probe(media_ref)
        except UnsupportedMediaError as e:
            logger.warning(f"Video {video_id}: probe failed ({e}); normalizing")
            await self._ensure_exists(video_id)
            try:
                media_ref = await self.prober.normalize(media_ref)
                info = await self.prober.probe(media_ref)
            except ProviderError as e:
                raise StageError(FailureReason.INVALID_MEDIA, f"Unreadable media: {e}")
        except ProviderError as e:
            raise StageError(FailureReason.INVALID_MEDIA, f"Unreadable media: {e}")

        if not info.duration or info.duration <= 0:
            raise StageError(FailureReason.INVALID_MEDIA, "Media has no playable duration")

        await self._save_media(video_id, media_ref, info.duration, {"probe": info.to_dict()})
        logger.info(f"Video {video_id}: validated ({info.duration:.1f}s, audio={info.has_audio})")

    async def _save_media(
        self,
        video_id: int,
        media_ref: str,
        duration: Optional[float],
        extra_metadata: dict,
    ) -> None:
        """Record validated media on a processing video. Status is unchanged."""
        async with self.session_factory() as session:
            video = await load_video(session, video_id)
            metadata = dict(video.metadata_json or {})
            metadata.update(extra_metadata)
            values = {Video.metadata_json: metadata}
            if duration:
                values[Video.duration] = duration
            replaced = media_ref != video.media_ref
            if replaced:
                supersede_media(metadata, video.media_ref)
                values[Video.media_ref] = media_ref

            saved = await transition_video(
                session, video_id, [VideoStatus.PROCESSING], VideoStatus.PROCESSING, values
            )
            if not saved:
                await session.rollback()
                if replaced:
                    await self.media_store.delete(media_ref)
                raise ConcurrencyConflict(f"Video {video_id} left processing during validation")
            await session.commit()

    # ── transcribe ───────────────────────────────────────────

    async def transcribe(self, video_id: int) -> None:
        """Transcribe the media and move the video to transcribed."""
        video = await self._ensure_exists(video_id)
        media_ref = video.media_ref
        normalized = False

        while True:
            try:
                result = await self._with_retries(
                    video_id, "transcription", lambda: self.transcriber.transcribe(media_ref)
                )
                break
            except UnsupportedMediaError as e:
                if normalized:
                    raise StageError(FailureReason.TRANSCRIPTION_ERROR, f"Transcription failed: {e}")
                logger.warning(f"Video {video_id}: provider rejected media ({e}); normalizing")
                normalized = True
                await self._ensure_exists(video_id)
                try:
                    media_ref = await self.prober.normalize(media_ref)
                except ProviderError as norm_error:
                    raise StageError(
                        FailureReason.TRANSCRIPTION_ERROR, f"Normalization failed: {norm_error}"
                    )
            except (TransientProviderError, PermanentProviderError) as e:
                raise StageError(FailureReason.TRANSCRIPTION_ERROR, f"Transcription failed: {e}")

        if result.is_empty:
            logger.info(f"Video {video_id}: transcript is empty")

        await self._save_transcript(video_id, media_ref, result)
        logger.info(
            f"Video {video_id}: transcribed {len(result.words)} words, "
            f"{len(result.segments)} segments"
        )

    async def _save_transcript(self, video_id: int, media_ref: str, result: TranscriptionResult) -> None:
        async with self.session_factory() as session:
            video = await load_video(session, video_id)
            duration = video.duration or result.duration
            await TranscriptService(session).save_transcript(video_id, result, duration)

            values = {Video.duration: duration}
            replaced = media_ref != video.media_ref
            if replaced:
                metadata = dict(video.metadata_json or {})
                supersede_media(metadata, video.media_ref)
                values[Video.media_ref] = media_ref
                values[Video.metadata_json] = metadata

            moved = await transition_video(
                session, video_id, [VideoStatus.PROCESSING], VideoStatus.TRANSCRIBED, values
            )
            if not moved:
                await session.rollback()
                if replaced:
                    await self.media_store.delete(media_ref)
                raise ConcurrencyConflict(f"Video {video_id} left processing during transcription")
            await session.commit()

    # ── analyze ──────────────────────────────────────────────

    async def analyze(self, video_id: int) -> None:
        """Score the transcript and replace the video's replaceable clips."""
        async with self.session_factory() as session:
            video = await load_video(session, video_id)
            transcript = await TranscriptService(session).load_result(video_id)
            avoid = await ClipService(session).preserved_windows(video_id)
            weights = (video.metadata_json or {}).get("virality_weights")
            duration = video.duration
            media_ref = video.media_ref

        if transcript is None:
            raise StageError(FailureReason.ANALYSIS_ERROR, "No transcript to analyze")

        await self._ensure_exists(video_id)
        try:
            candidates = await self.analyzer.analyze(
                transcript, media_ref, weights=weights, video_duration=duration, avoid=avoid
            )
        except (ProviderError, ValueError) as e:
            raise StageError(FailureReason.ANALYSIS_ERROR, f"Analysis failed: {e}")

        async with self.session_factory() as session:
            await load_video(session, video_id)
            clips = ClipService(session)

            # Clips approved while the analyzer ran are preserved too
            preserved = await clips.preserved_windows(video_id)
            candidates = [
                c for c in candidates
                if not any(windows_overlap(c.start_time, c.end_time, s, e) for s, e in preserved)
            ]
            created = await clips.replace_candidates(
                video_id,
                candidates[:self.settings.max_clips],
                duration,
                self.settings.min_clip_seconds,
                self.settings.max_clip_seconds,
            )

            moved = await transition_video(
                session, video_id, [VideoStatus.TRANSCRIBED], VideoStatus.ANALYZED
            )
            if not moved:
                await session.rollback()
                raise ConcurrencyConflict(f"Video {video_id} left transcribed during analysis")
            await session.commit()

        logger.info(f"Video {video_id}: analysis produced {len(created)} clips")
