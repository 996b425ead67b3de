"""Pipeline coordinator: drives videos from ingestion to ready."""
import asyncio
import logging
import traceback
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from content_engine.errors import (
    ConcurrencyConflict,
    NotFoundError,
    StageError,
    ValidationError,
    VideoDeletedError,
)
from content_engine.models.pipeline_stage import PipelineStage, StageName, StageStatus
from content_engine.models.transcript import VideoTranscript
from content_engine.models.video import (
    TERMINAL_VIDEO_STATUSES,
    FailureReason,
    Video,
    VideoStatus,
)
from content_engine.pipeline.virality.weights import validate_weights
from content_engine.utils.clock import utcnow
from content_engine.workers.handlers import StageHandlers, transition_video

logger = logging.getLogger(__name__)

# Stages run, in order, while a video sits in each status
STAGES_BY_STATUS = {
    VideoStatus.DOWNLOADING: (StageName.DOWNLOAD,),
    VideoStatus.PROCESSING: (StageName.VALIDATE, StageName.TRANSCRIBE),
    VideoStatus.TRANSCRIBED: (StageName.ANALYZE,),
}

STAGE_FAILURE_REASONS = {
    StageName.DOWNLOAD: FailureReason.DOWNLOAD_ERROR,
    StageName.VALIDATE: FailureReason.INVALID_MEDIA,
    StageName.TRANSCRIBE: FailureReason.TRANSCRIPTION_ERROR,
    StageName.ANALYZE: FailureReason.ANALYSIS_ERROR,
}

REANALYZABLE_FAILURES = (FailureReason.ANALYSIS_ERROR, FailureReason.TIMEOUT)


class PipelineCoordinator:
    """
    Polls for actionable videos and runs their next stage as a background task.

    A stage is claimed by inserting its (video_id, stage) row; losing the
    insert to another poller means the stage is owned elsewhere. At most one
    task runs per video in this process, and at most
    `pipeline_max_concurrent_videos` tasks run at once.
    """

    def __init__(self, session_factory, handlers: StageHandlers, settings):
        self.session_factory = session_factory
        self.handlers = handlers
        self.settings = settings
        self._tasks: Dict[int, asyncio.Task] = {}

    @property
    def in_flight(self) -> Dict[int, asyncio.Task]:
        return dict(self._tasks)

    def is_video_running(self, video_id: int) -> bool:
        return video_id in self._tasks

    async def tick(self) -> int:
        """
        One polling pass.

        Returns:
            Number of stage tasks launched
        """
        await self.expire_stale_stages()
        await self.finalize_analyzed()

        capacity = self.settings.pipeline_max_concurrent_videos - len(self._tasks)
        if capacity <= 0:
            return 0

        launched = 0
        for video_id, stage in await self._next_stages():
            if launched >= capacity:
                break
            if video_id in self._tasks:
                continue
            if not await self._claim(video_id, stage):
                continue
            self._tasks[video_id] = asyncio.create_task(self._run_stage(video_id, stage))
            launched += 1
            logger.info(f"Video {video_id}: started stage {stage.value}")

        return launched

    async def _next_stages(self) -> List[Tuple[int, StageName]]:
        """Actionable (video, stage) pairs, oldest video first."""
        async with self.session_factory() as session:
            videos = (await session.execute(
                select(Video.id, Video.status)
                .where(Video.status.in_(list(STAGES_BY_STATUS)))
                .order_by(Video.updated_at, Video.id)
            )).all()
            if not videos:
                return []

            rows = (await session.execute(
                select(PipelineStage.video_id, PipelineStage.stage, PipelineStage.status)
                .where(PipelineStage.video_id.in_([v.id for v in videos]))
            )).all()

        stage_status = {(r.video_id, r.stage): r.status for r in rows}
        pending = []
        for video_id, status in videos:
            if video_id in self._tasks:
                continue
            for stage in STAGES_BY_STATUS[status]:
                existing = stage_status.get((video_id, stage))
                if existing is None:
                    pending.append((video_id, stage))
                    break
                if existing != StageStatus.COMPLETED:
                    break
        return pending

    async def _claim(self, video_id: int, stage: StageName) -> bool:
        now = utcnow()
        async with self.session_factory() as session:
            session.add(PipelineStage(
                video_id=video_id,
                stage=stage,
                status=StageStatus.RUNNING,
                started_at=now,
                deadline_at=now + timedelta(seconds=self.settings.stage_timeout_seconds),
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Video {video_id}: stage {stage.value} already claimed")
                return False
        return True

    async def _run_stage(self, video_id: int, stage: StageName):
        """Run a claimed stage with timeout and failure handling."""
        handler = self.handlers.for_stage(stage)
        try:
            await asyncio.wait_for(handler(video_id), timeout=self.settings.stage_timeout_seconds)
            await self._complete_stage(video_id, stage)
            if stage == StageName.ANALYZE:
                await self.finalize_analyzed(video_id)

        except asyncio.TimeoutError:
            logger.warning(
                f"Video {video_id}: stage {stage.value} exceeded "
                f"{self.settings.stage_timeout_seconds}s"
            )
            await self._fail(
                video_id, stage, FailureReason.TIMEOUT,
                f"Stage {stage.value} timed out after {self.settings.stage_timeout_seconds}s",
            )

        except VideoDeletedError:
            logger.info(f"Video {video_id}: deleted during stage {stage.value}")

        except ConcurrencyConflict as e:
            logger.warning(f"Video {video_id}: stage {stage.value} lost a race: {e}")
            await self._close_stage(video_id, stage, StageStatus.FAILED, str(e))

        except StageError as e:
            logger.error(f"Video {video_id}: stage {stage.value} failed: {e.message}")
            await self._fail(video_id, stage, FailureReason(e.reason), e.message)

        except asyncio.CancelledError:
            logger.info(f"Video {video_id}: stage {stage.value} cancelled")
            raise

        except Exception as e:
            logger.error(
                f"Video {video_id}: stage {stage.value} crashed: {e}\n{traceback.format_exc()}"
            )
            await self._fail(video_id, stage, STAGE_FAILURE_REASONS[stage], str(e) or type(e).__name__)

        finally:
            self._tasks.pop(video_id, None)

    async def _close_stage(self, video_id: int, stage: StageName, status: StageStatus, error=None):
        async with self.session_factory() as session:
            await session.execute(
                update(PipelineStage)
                .where(
                    PipelineStage.video_id == video_id,
                    PipelineStage.stage == stage,
                    PipelineStage.status == StageStatus.RUNNING,
                )
                .values(status=status, error=error, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _complete_stage(self, video_id: int, stage: StageName):
        await self._close_stage(video_id, stage, StageStatus.COMPLETED)

    async def _fail(self, video_id: int, stage: StageName, reason: FailureReason, message: str):
        """Fail the stage and move the video to failed, unless it already finished."""
        await self._close_stage(video_id, stage, StageStatus.FAILED, message)
        async with self.session_factory() as session:
            failed = await transition_video(
                session,
                video_id,
                [s for s in VideoStatus if s not in TERMINAL_VIDEO_STATUSES],
                VideoStatus.FAILED,
                {Video.failure_reason: reason, Video.error_message: message},
            )
            await session.commit()
        if failed:
            logger.info(f"Video {video_id}: failed ({reason.value})")

    async def expire_stale_stages(self) -> int:
        """Fail running stages past their deadline, e.g. after a worker crash."""
        now = utcnow()
        async with self.session_factory() as session:
            stale = (await session.execute(
                select(PipelineStage.video_id, PipelineStage.stage)
                .where(
                    PipelineStage.status == StageStatus.RUNNING,
                    PipelineStage.deadline_at < now,
                )
            )).all()

        for video_id, stage in stale:
            task = self._tasks.get(video_id)
            if task is not None:
                task.cancel()
            logger.warning(f"Video {video_id}: stage {stage.value} passed its deadline")
            await self._fail(
                video_id, stage, FailureReason.TIMEOUT,
                f"Stage {stage.value} did not finish before its deadline",
            )
        return len(stale)

    async def finalize_analyzed(self, video_id: Optional[int] = None) -> int:
        """Move analyzed videos to ready."""
        async with self.session_factory() as session:
            query = (
                update(Video)
                .where(Video.status == VideoStatus.ANALYZED)
                .values(status=VideoStatus.READY, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if video_id is not None:
                query = query.where(Video.id == video_id)
            result = await session.execute(query)
            await session.commit()

        if result.rowcount:
            logger.info(f"{result.rowcount} video(s) ready")
        return result.rowcount

    async def request_reanalysis(
        self,
        video_id: int,
        weights: Optional[Dict[str, float]] = None,
        company_id: Optional[str] = None,
    ) -> Video:
        """
        Send a transcribed video back through analysis.

        Approved and scheduled clips survive; pending and rejected clips are
        replaced when the analyze stage persists.

        Raises:
            NotFoundError: Unknown video
            ValidationError: No transcript, or the video is still in the pipeline
            ConcurrencyConflict: A stage for the video is running in this process
        """
        if video_id in self._tasks:
            raise ConcurrencyConflict(f"Video {video_id} has a stage in progress")
        if weights:
            weights = validate_weights(weights)

        async with self.session_factory() as session:
            video = await session.get(Video, video_id)
            if not video or (company_id is not None and video.company_id != company_id):
                raise NotFoundError(f"Video {video_id} not found")

            has_transcript = (await session.execute(
                select(VideoTranscript.id).where(VideoTranscript.video_id == video_id)
            )).scalar_one_or_none() is not None
            if not has_transcript:
                raise ValidationError(f"Video {video_id} has no transcript yet")

            allowed = video.status == VideoStatus.READY or (
                video.status == VideoStatus.FAILED and video.failure_reason in REANALYZABLE_FAILURES
            )
            if not allowed:
                raise ValidationError(
                    f"Video {video_id} is {video.status.value}; only ready videos or videos "
                    f"that failed analysis can be re-analyzed"
                )

            metadata = dict(video.metadata_json or {})
            if weights:
                metadata["virality_weights"] = weights

            moved = await transition_video(
                session, video_id, [video.status], VideoStatus.TRANSCRIBED,
                {Video.failure_reason: None, Video.error_message: None, Video.metadata_json: metadata},
            )
            if not moved:
                await session.rollback()
                raise ConcurrencyConflict(f"Video {video_id} changed concurrently")

            await session.execute(
                delete(PipelineStage).where(
                    PipelineStage.video_id == video_id,
                    PipelineStage.stage == StageName.ANALYZE,
                    PipelineStage.status != StageStatus.RUNNING,
                )
            )
            await session.commit()
            await session.refresh(video)

        logger.info(f"Video {video_id}: re-analysis requested")
        return video

    async def cancel_video(self, video_id: int) -> bool:
        """Cancel the video's in-flight stage task, if any."""
        task = self._tasks.get(video_id)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def drain(self):
        """Wait for all in-flight stage tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def run_until_idle(self, max_ticks: int = 50) -> int:
        """Tick and drain until no stage can be launched. Returns ticks used."""
        for i in range(1, max_ticks + 1):
            launched = await self.tick()
            await self.drain()
            if not launched:
                return i
        return max_ticks

    async def shutdown(self):
        """Cancel all running stage tasks."""
        for task in self._tasks.values():
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        self._tasks.clear()
