# Models module
from content_engine.models.video import Video, VideoSource, VideoStatus, FailureReason
from content_engine.models.transcript import VideoTranscript, TranscriptWord, TranscriptSegment
from content_engine.models.clip import Clip, ClipStatus
from content_engine.models.scheduled_post import (
    ScheduledPost,
    PostDelivery,
    PostStatus,
    ApprovalStatus,
    DeliveryStatus,
)
from content_engine.models.social_account import SocialAccount, Platform, AuthStatus
from content_engine.models.pipeline_stage import PipelineStage, StageName, StageStatus

__all__ = [
    "Video", "VideoSource", "VideoStatus", "FailureReason",
    "VideoTranscript", "TranscriptWord", "TranscriptSegment",
    "Clip", "ClipStatus",
    "ScheduledPost", "PostDelivery", "PostStatus", "ApprovalStatus", "DeliveryStatus",
    "SocialAccount", "Platform", "AuthStatus",
    "PipelineStage", "StageName", "StageStatus",
]
