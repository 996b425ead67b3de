"""API routes."""
import json
import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from content_engine.api.schemas import (
    BulkClipReviewRequest,
    BulkClipReviewResponse,
    ClipDuplicateRequest,
    ClipExportRequest,
    ClipResponse,
    ClipReviewRequest,
    ClipTimelineUpdate,
    ClipTranscriptResponse,
    ClipUpdate,
    HealthResponse,
    PostReviewRequest,
    ReanalyzeRequest,
    ScheduledPostCreate,
    ScheduledPostResponse,
    TranscriptResponse,
    VideoImportRequest,
    VideoResponse,
    VideoStatusResponse,
)
from content_engine.config import settings
from content_engine.container import ServiceContainer
from content_engine.db.database import get_db
from content_engine.errors import (
    ConcurrencyConflict,
    NotFoundError,
    PermissionDeniedError,
    ProviderError,
    ValidationError,
)
from content_engine.models.clip import ClipStatus
from content_engine.models.scheduled_post import ApprovalStatus, PostStatus
from content_engine.models.video import VideoStatus
from content_engine.services.clip_service import ClipService
from content_engine.services.export_service import ClipExportService, build_caption_file
from content_engine.services.ingestion_service import IngestionService
from content_engine.services.scheduling_service import SchedulingService
from content_engine.services.transcript_service import TranscriptService
from content_engine.services.video_service import VideoService
from content_engine.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from content_engine.utils.ytdlp import check_ytdlp_available

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE_ERRORS = (NotFoundError, PermissionDeniedError, ConcurrencyConflict, ValueError)


def _http_error(e: Exception) -> HTTPException:
    """Map a service error to its HTTP status."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ConcurrencyConflict):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def company_id_header(x_company_id: str = Header(..., description="Calling company")) -> str:
    company_id = x_company_id.strip()
    if not company_id:
        raise HTTPException(status_code=400, detail="X-Company-Id header is required")
    return company_id


def can_publish_header(x_can_publish: bool = Header(False, description="Caller holds publishing rights")) -> bool:
    return x_can_publish


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    ytdlp_ok = check_ytdlp_available()

    all_ok = ffmpeg_ok and ffprobe_ok and ytdlp_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        if not ytdlp_ok:
            missing.append("yt-dlp")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        ytdlp_available=ytdlp_ok,
        scheduler_running=bool(container.scheduler and container.scheduler.is_running()),
        message=message,
    )


# =============================================================================
# Videos
# =============================================================================

async def _iter_upload(file: UploadFile) -> AsyncIterator[bytes]:
    while True:
        chunk = await file.read(settings.upload_chunk_bytes)
        if not chunk:
            break
        yield chunk


@router.post("/videos/upload", response_model=VideoResponse, status_code=201)
async def upload_video(
    file: UploadFile = File(...),
    weights: Optional[str] = Form(None, description="JSON object of virality weights"),
    company_id: str = Depends(company_id_header),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db),
):
    """Upload a video file; processing starts in the background."""
    try:
        parsed_weights = json.loads(weights) if weights else None
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="weights must be a JSON object")

    service = IngestionService(db, container.media_store)
    try:
        video = await service.create_video_from_upload(
            company_id,
            file.content_type,
            _iter_upload(file),
            filename=file.filename,
            size=file.size,
            weights=parsed_weights,
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    finally:
        await file.close()
    return VideoResponse.model_validate(video)


@router.post("/videos/import", response_model=VideoResponse, status_code=201)
async def import_video(
    request: VideoImportRequest,
    company_id: str = Depends(company_id_header),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db),
):
    """Import a video from a URL; the download runs in the background."""
    service = IngestionService(db, container.media_store)
    try:
        video = await service.create_video_from_url(
            company_id, request.url, name=request.name, weights=request.weights
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return VideoResponse.model_validate(video)


@router.get("/videos", response_model=List[VideoResponse])
async def list_videos(
    status: Optional[VideoStatus] = Query(None),
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """List the company's videos."""
    videos = await VideoService(db).list_videos(company_id, status)
    return [VideoResponse.model_validate(v) for v in videos]


@router.get("/videos/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Get a video."""
    video = await VideoService(db).get_video(video_id, company_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    return VideoResponse.model_validate(video)


@router.get("/videos/{video_id}/status", response_model=VideoStatusResponse)
async def get_video_status(
    video_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Pipeline status, stage history and clip counts."""
    try:
        return await VideoService(db).get_video_status(video_id, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)


@router.delete("/videos/{video_id}")
async def delete_video(
    video_id: int,
    company_id: str = Depends(company_id_header),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db),
):
    """Delete a video, its clips and transcript; cancels in-flight processing."""
    service = VideoService(db, container.media_store)
    if not await service.get_video(video_id, company_id):
        raise HTTPException(status_code=404, detail="Video not found")

    await container.coordinator.cancel_video(video_id)
    if not await service.delete_video(video_id, company_id):
        raise HTTPException(status_code=404, detail="Video not found")
    return {"status": "deleted"}


@router.post("/videos/{video_id}/reanalyze", response_model=VideoResponse)
async def reanalyze_video(
    video_id: int,
    request: Optional[ReanalyzeRequest] = None,
    company_id: str = Depends(company_id_header),
    container: ServiceContainer = Depends(get_container),
):
    """Re-run analysis; approved and scheduled clips are kept."""
    weights = request.weights if request else None
    try:
        video = await container.coordinator.request_reanalysis(video_id, weights, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return VideoResponse.model_validate(video)


@router.get("/videos/{video_id}/transcript", response_model=TranscriptResponse)
async def get_video_transcript(
    video_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Full transcript with word and segment timings."""
    if not await VideoService(db).get_video(video_id, company_id):
        raise HTTPException(status_code=404, detail="Video not found")

    transcript = await TranscriptService(db).get_transcript(video_id)
    if not transcript:
        raise HTTPException(status_code=404, detail="Transcript not available")

    return TranscriptResponse(
        video_id=video_id,
        full_text=transcript.full_text,
        language=transcript.language,
        duration=transcript.duration,
        words=[w.to_dict() for w in transcript.words],
        segments=[s.to_dict() for s in transcript.segments],
    )


# =============================================================================
# Clips
# =============================================================================

@router.get("/videos/{video_id}/clips", response_model=List[ClipResponse])
async def list_clips(
    video_id: int,
    status: Optional[ClipStatus] = Query(None),
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """List clips for a video, highest virality first."""
    try:
        clips = await ClipService(db).list_clips(video_id, status, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return [ClipResponse.model_validate(c) for c in clips]


@router.post("/clips/review", response_model=BulkClipReviewResponse)
async def review_clips(
    request: BulkClipReviewRequest,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject several clips at once."""
    try:
        return await ClipService(db).review_clips(request.clip_ids, request.decision, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)


@router.get("/clips/{clip_id}", response_model=ClipResponse)
async def get_clip(
    clip_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Get a clip."""
    clip = await ClipService(db).get_clip(clip_id, company_id)
    if not clip:
        raise HTTPException(status_code=404, detail="Clip not found")
    return ClipResponse.model_validate(clip)


@router.patch("/clips/{clip_id}", response_model=ClipResponse)
async def update_clip(
    clip_id: int,
    update: ClipUpdate,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Update how a clip is presented."""
    try:
        clip = await ClipService(db).update_clip_presentation(
            clip_id,
            aspect_ratio=update.aspect_ratio,
            caption_style=update.caption_style,
            ai_title=update.ai_title,
            ai_description=update.ai_description,
            company_id=company_id,
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ClipResponse.model_validate(clip)


@router.put("/clips/{clip_id}/timeline", response_model=ClipResponse)
async def update_clip_timeline(
    clip_id: int,
    update: ClipTimelineUpdate,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Move the window of a clip that is still open to review."""
    try:
        clip = await ClipService(db).update_clip_timeline(
            clip_id, update.start_time, update.end_time, company_id
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ClipResponse.model_validate(clip)


@router.post("/clips/{clip_id}/duplicate", response_model=ClipResponse, status_code=201)
async def duplicate_clip(
    clip_id: int,
    request: Optional[ClipDuplicateRequest] = None,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Copy a clip into a new pending_review clip."""
    try:
        clip = await ClipService(db).duplicate_clip(
            clip_id, title=request.title if request else None, company_id=company_id
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ClipResponse.model_validate(clip)


@router.post("/clips/{clip_id}/export", response_model=ClipResponse)
async def export_clip(
    clip_id: int,
    request: Optional[ClipExportRequest] = None,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Render an approved clip at its aspect ratio with burned-in captions."""
    service = ClipExportService(db, container.renderer, container.media_store)
    try:
        clip = await service.export_clip(clip_id, company_id, force=bool(request and request.force))
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    except ProviderError as e:
        logger.error(f"Export of clip {clip_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return ClipResponse.model_validate(clip)


@router.get("/clips/{clip_id}/captions", response_class=PlainTextResponse)
async def get_clip_captions(
    clip_id: int,
    fmt: str = Query("srt", alias="format", description="srt or ass"),
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Caption file for the clip, timed from the clip start."""
    try:
        return await build_caption_file(db, clip_id, fmt, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)


@router.delete("/clips/{clip_id}")
async def delete_clip(
    clip_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Delete a clip; scheduled posts that use it are invalidated."""
    if not await ClipService(db, container.media_store).delete_clip(clip_id, company_id):
        raise HTTPException(status_code=404, detail="Clip not found")
    return {"status": "deleted"}


@router.get("/clips/{clip_id}/transcript", response_model=ClipTranscriptResponse)
async def get_clip_transcript(
    clip_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Transcript words and segments inside the clip."""
    try:
        return await TranscriptService(db).get_clip_transcript(clip_id, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)


@router.post("/clips/{clip_id}/review", response_model=ClipResponse)
async def review_clip(
    clip_id: int,
    request: ClipReviewRequest,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a pending clip."""
    try:
        clip = await ClipService(db).review_clip(clip_id, request.decision, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ClipResponse.model_validate(clip)


# =============================================================================
# Scheduled Posts
# =============================================================================

@router.post("/scheduled-posts", response_model=ScheduledPostResponse, status_code=201)
async def create_scheduled_post(
    request: ScheduledPostCreate,
    company_id: str = Depends(company_id_header),
    can_publish: bool = Depends(can_publish_header),
    db: AsyncSession = Depends(get_db),
):
    """Schedule an approved clip or ad-hoc content."""
    try:
        post = await SchedulingService(db).create_scheduled_post(
            company_id,
            request.platforms,
            scheduled_for=request.scheduled_for,
            clip_id=request.clip_id,
            content=request.content,
            content_overrides=request.content_overrides,
            media_refs=request.media_refs,
            publish_now=request.publish_now,
            can_publish=can_publish,
            approval_status=request.approval_status,
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ScheduledPostResponse.model_validate(post)


@router.get("/scheduled-posts", response_model=List[ScheduledPostResponse])
async def list_scheduled_posts(
    status: Optional[PostStatus] = Query(None),
    approval_status: Optional[ApprovalStatus] = Query(None),
    clip_id: Optional[int] = Query(None),
    platform: Optional[str] = Query(None),
    upcoming: bool = Query(False),
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """List scheduled posts, soonest first."""
    posts = await SchedulingService(db).list_scheduled_posts(
        company_id,
        status=status,
        approval_status=approval_status,
        clip_id=clip_id,
        platform=platform,
        upcoming=upcoming,
    )
    return [ScheduledPostResponse.model_validate(p) for p in posts]


@router.post("/scheduled-posts/{post_id}/review", response_model=ScheduledPostResponse)
async def review_scheduled_post(
    post_id: int,
    request: PostReviewRequest,
    company_id: str = Depends(company_id_header),
    can_publish: bool = Depends(can_publish_header),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a scheduled post (publishing rights required)."""
    try:
        post = await SchedulingService(db).review_scheduled_post(
            post_id, request.decision, company_id, can_publish=can_publish
        )
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ScheduledPostResponse.model_validate(post)


@router.post("/scheduled-posts/{post_id}/retry", response_model=ScheduledPostResponse)
async def retry_scheduled_post(
    post_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Re-arm the failed deliveries of a failed post."""
    try:
        post = await SchedulingService(db).retry_scheduled_post(post_id, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    return ScheduledPostResponse.model_validate(post)


@router.delete("/scheduled-posts/{post_id}")
async def cancel_scheduled_post(
    post_id: int,
    company_id: str = Depends(company_id_header),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a post that has not started publishing."""
    try:
        cancelled = await SchedulingService(db).cancel_scheduled_post(post_id, company_id)
    except SERVICE_ERRORS as e:
        raise _http_error(e)
    if not cancelled:
        raise HTTPException(status_code=404, detail="Scheduled post not found")
    return {"status": "cancelled"}
