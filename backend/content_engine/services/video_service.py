"""Video service layer."""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from content_engine.adapters.base import MediaStore
from content_engine.errors import NotFoundError
from content_engine.models.clip import Clip
from content_engine.models.pipeline_stage import PipelineStage
from content_engine.models.video import Video, VideoStatus
from content_engine.services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)


class VideoService:
    """Service for video lookups and deletion."""

    def __init__(self, db: AsyncSession, media_store: Optional[MediaStore] = None):
        self.db = db
        self.media_store = media_store

    async def get_video(self, video_id: int, company_id: Optional[str] = None) -> Optional[Video]:
        video = await self.db.get(Video, video_id)
        if video is None:
            return None
        if company_id is not None and video.company_id != company_id:
            return None
        return video

    async def require_video(self, video_id: int, company_id: Optional[str] = None) -> Video:
        video = await self.get_video(video_id, company_id)
        if not video:
            raise NotFoundError(f"Video {video_id} not found")
        return video

    async def list_videos(
        self,
        company_id: str,
        status: Optional[VideoStatus] = None,
    ) -> List[Video]:
        """List a company's videos, newest first."""
        query = select(Video).where(Video.company_id == company_id)
        if status is not None:
            query = query.where(Video.status == VideoStatus(status))
        result = await self.db.execute(query.order_by(Video.created_at.desc(), Video.id.desc()))
        return list(result.scalars().all())

    async def get_video_status(self, video_id: int, company_id: Optional[str] = None) -> dict:
        """Status, failure details, stage history and clip counts."""
        video = await self.require_video(video_id, company_id)

        stages = await self.db.execute(
            select(PipelineStage)
            .where(PipelineStage.video_id == video_id)
            .order_by(PipelineStage.started_at, PipelineStage.id)
        )
        counts = await self.db.execute(
            select(Clip.status, func.count(Clip.id))
            .where(Clip.video_id == video_id)
            .group_by(Clip.status)
        )

        return {
            "id": video.id,
            "status": video.status.value,
            "failure_reason": video.failure_reason.value if video.failure_reason else None,
            "error_message": video.error_message,
            "duration": video.duration,
            "stages": [stage.to_dict() for stage in stages.scalars().all()],
            "clip_counts": {status.value: count for status, count in counts.all()},
            "updated_at": video.updated_at.isoformat() if video.updated_at else None,
        }

    async def delete_video(self, video_id: int, company_id: Optional[str] = None) -> bool:
        """
        Delete a video with its transcript, clips and stage rows.

        Scheduled posts referencing its clips are invalidated and the stored
        media is removed. In-flight stage work notices the missing row before
        its next external call or write.
        """
        video = await self.get_video(video_id, company_id)
        if not video:
            return False

        metadata = video.metadata_json or {}
        media_refs = {video.media_ref, metadata.get("original_media_ref")}
        media_refs.update(metadata.get("superseded_media_refs") or [])

        clip_rows = (await self.db.execute(
            select(Clip.id, Clip.export_media_ref).where(Clip.video_id == video_id)
        )).all()
        clip_ids = [row.id for row in clip_rows]
        media_refs.update(row.export_media_ref for row in clip_rows)
        await SchedulingService(self.db).invalidate_posts_for_clips(clip_ids)

        await self.db.execute(
            delete(Video).where(Video.id == video_id).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        self.db.expunge(video)

        if self.media_store is not None:
            for media_ref in media_refs - {None}:
                await self.media_store.delete(media_ref)

        logger.info(f"Deleted video {video_id} ({len(clip_ids)} clips)")
        return True
