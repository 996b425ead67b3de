"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from content_engine.models.clip import ClipStatus
from content_engine.models.scheduled_post import ApprovalStatus, DeliveryStatus, PostStatus
from content_engine.models.video import FailureReason, VideoSource, VideoStatus


# =============================================================================
# Video Schemas
# =============================================================================

class VideoImportRequest(BaseModel):
    """Request to import a video from a remote URL."""
    url: str = Field(..., description="http(s) URL of the source video")
    name: Optional[str] = Field(None, description="Display name (taken from the source if not provided)")
    weights: Optional[Dict[str, float]] = Field(None, description="Virality weights for this video")


class VideoResponse(BaseModel):
    """Video response."""
    id: int
    company_id: str
    name: Optional[str]
    source: VideoSource
    source_url: Optional[str]
    media_ref: Optional[str]
    duration: Optional[float]
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    status: VideoStatus
    failure_reason: Optional[FailureReason]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StageResponse(BaseModel):
    """Pipeline stage record."""
    stage: str
    status: str
    attempts: int
    error: Optional[str]
    started_at: Optional[str]
    deadline_at: Optional[str]
    completed_at: Optional[str]


class VideoStatusResponse(BaseModel):
    """Pipeline status of a video."""
    id: int
    status: str
    failure_reason: Optional[str]
    error_message: Optional[str]
    duration: Optional[float]
    stages: List[StageResponse]
    clip_counts: Dict[str, int]
    updated_at: Optional[str]


class ReanalyzeRequest(BaseModel):
    """Request to re-run virality analysis."""
    weights: Optional[Dict[str, float]] = Field(None, description="New virality weights")


# =============================================================================
# Transcript Schemas
# =============================================================================

class TimedWordResponse(BaseModel):
    word: str
    start_time: float
    end_time: float


class TimedSegmentResponse(BaseModel):
    text: str
    start_time: float
    end_time: float


class TranscriptResponse(BaseModel):
    """Full transcript of a video."""
    video_id: int
    full_text: str
    language: Optional[str]
    duration: Optional[float]
    words: List[TimedWordResponse]
    segments: List[TimedSegmentResponse]


class ClipTranscriptResponse(BaseModel):
    """Transcript slice of a clip, timed from the clip start."""
    clip_id: int
    video_id: int
    start_time: float
    end_time: float
    text: str
    words: List[TimedWordResponse]
    segments: List[TimedSegmentResponse]


# =============================================================================
# Clip Schemas
# =============================================================================

class ClipResponse(BaseModel):
    """Clip response."""
    id: int
    video_id: int
    start_time: float
    end_time: float
    duration: float
    virality_score: int
    subscores: Dict[str, int]
    aspect_ratio: str
    caption_style: Optional[Dict[str, Any]]
    ai_title: Optional[str]
    ai_description: Optional[str]
    transcript_excerpt: Optional[str]
    status: ClipStatus
    reviewed_at: Optional[datetime]
    scheduled_for: Optional[datetime]
    export_media_ref: Optional[str] = None
    exported_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ClipUpdate(BaseModel):
    """Presentation edits; scores are fixed."""
    aspect_ratio: Optional[str] = None
    caption_style: Optional[Dict[str, Any]] = None
    ai_title: Optional[str] = Field(None, max_length=255)
    ai_description: Optional[str] = None


class ClipTimelineUpdate(BaseModel):
    """New window for a clip still open to review."""
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., gt=0)


class ClipDuplicateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=255)


class ClipExportRequest(BaseModel):
    """Render the clip; `force` re-renders a current export."""
    force: bool = False


class ClipReviewRequest(BaseModel):
    """Approve or reject a clip."""
    decision: str = Field(..., description="'approved' or 'rejected'")


class BulkClipReviewRequest(BaseModel):
    """Approve or reject several clips."""
    clip_ids: List[int] = Field(..., min_length=1)
    decision: str = Field(..., description="'approved' or 'rejected'")


class SkippedClip(BaseModel):
    id: int
    reason: str


class BulkClipReviewResponse(BaseModel):
    updated: List[int]
    skipped: List[SkippedClip]


# =============================================================================
# Scheduled Post Schemas
# =============================================================================

class ScheduledPostCreate(BaseModel):
    """Request to schedule a clip or ad-hoc content."""
    platforms: List[str] = Field(..., min_length=1)
    scheduled_for: Optional[datetime] = Field(None, description="Publication time (UTC if naive)")
    clip_id: Optional[int] = None
    content: Optional[str] = None
    content_overrides: Optional[Dict[str, str]] = Field(None, description="Per-platform text")
    media_refs: Optional[List[str]] = None
    publish_now: bool = False
    approval_status: Optional[ApprovalStatus] = None


class PostDeliveryResponse(BaseModel):
    """Per-platform delivery state."""
    id: int
    platform: str
    status: DeliveryStatus
    retry_count: int
    next_attempt_at: Optional[datetime]
    external_post_id: Optional[str]
    posted_at: Optional[datetime]
    error_message: Optional[str]

    class Config:
        from_attributes = True


class ScheduledPostResponse(BaseModel):
    """Scheduled post response."""
    id: int
    company_id: str
    clip_id: Optional[int]
    platforms: List[str]
    content: str
    content_overrides: Dict[str, str]
    media_paths: List[str]
    scheduled_for: datetime
    status: PostStatus
    approval_status: ApprovalStatus
    posted_at: Optional[datetime]
    error_message: Optional[str]
    retry_count: int
    deliveries: List[PostDeliveryResponse]
    created_at: datetime

    class Config:
        from_attributes = True


class PostReviewRequest(BaseModel):
    """Approve or reject a scheduled post."""
    decision: str = Field(..., description="'approved' or 'rejected'")


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    ytdlp_available: bool
    scheduler_running: bool
    message: Optional[str] = None
