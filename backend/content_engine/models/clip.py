"""Clip model."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Float, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from content_engine.db.database import Base
from content_engine.utils.clock import utcnow


class ClipStatus(str, enum.Enum):
    """Review / scheduling status of a clip."""
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"


# Statuses that re-analysis must never touch
PRESERVED_CLIP_STATUSES = (ClipStatus.APPROVED, ClipStatus.SCHEDULED)

# Statuses that re-analysis replaces
REPLACEABLE_CLIP_STATUSES = (ClipStatus.PENDING_REVIEW, ClipStatus.REJECTED)

ASPECT_RATIOS = ("9:16", "1:1", "4:5", "16:9")


class Clip(Base):
    """A scored time window of a source video."""

    __tablename__ = "clips"
    # Ids of deleted clips are never reused by later candidates
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)

    # Time window
    start_time = Column(Float, nullable=False)
    end_time = Column(Float, nullable=False)
    duration = Column(Float, nullable=False)

    # Virality scores (0-100)
    virality_score = Column(Integer, nullable=False, default=0)
    virality_hook = Column(Integer, nullable=False, default=0)
    virality_emotion = Column(Integer, nullable=False, default=0)
    virality_insight = Column(Integer, nullable=False, default=0)
    virality_cta = Column(Integer, nullable=False, default=0)
    virality_quality = Column(Integer, nullable=False, default=0)

    # Presentation
    aspect_ratio = Column(String(8), nullable=False, default="9:16")
    caption_style = Column(JSON, nullable=True)
    ai_title = Column(String(255), nullable=True)
    ai_description = Column(Text, nullable=True)
    transcript_excerpt = Column(Text, nullable=True)

    # Rendered file and the window / presentation it was rendered from
    export_media_ref = Column(String(255), nullable=True)
    export_settings = Column(JSON, nullable=True)
    exported_at = Column(DateTime, nullable=True)

    # Review state
    status = Column(Enum(ClipStatus), default=ClipStatus.PENDING_REVIEW, nullable=False, index=True)
    reviewed_at = Column(DateTime, nullable=True)
    scheduled_for = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    video = relationship("Video", back_populates="clips")

    def __repr__(self):
        return f"<Clip(id={self.id}, start={self.start_time}, end={self.end_time}, status={self.status})>"

    def presentation_snapshot(self) -> dict:
        """What a rendered export depends on."""
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "aspect_ratio": self.aspect_ratio,
            "caption_style": self.caption_style,
        }

    @property
    def export_is_current(self) -> bool:
        return bool(self.export_media_ref) and self.export_settings == self.presentation_snapshot()

    @property
    def subscores(self) -> dict:
        return {
            "hook": self.virality_hook,
            "emotion": self.virality_emotion,
            "insight": self.virality_insight,
            "cta": self.virality_cta,
            "quality": self.virality_quality,
        }
