"""Pipeline stage model: one row per (video, stage) acts as the idempotency claim."""
import enum
from sqlalchemy import Column, Integer, DateTime, Enum, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from content_engine.db.database import Base
from content_engine.utils.clock import utcnow


class StageName(str, enum.Enum):
    """Pipeline stage enumeration."""
    DOWNLOAD = "download"
    VALIDATE = "validate"
    TRANSCRIBE = "transcribe"
    ANALYZE = "analyze"


class StageStatus(str, enum.Enum):
    """Stage status enumeration."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(Base):
    """Claim and outcome of one pipeline stage for one video."""

    __tablename__ = "pipeline_stages"
    __table_args__ = (
        UniqueConstraint("video_id", "stage", name="uq_pipeline_stage_video_stage"),
    )

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)

    stage = Column(Enum(StageName), nullable=False)
    status = Column(Enum(StageStatus), default=StageStatus.RUNNING, nullable=False, index=True)
    attempts = Column(Integer, default=1, nullable=False)
    error = Column(Text, nullable=True)

    # Timestamps
    started_at = Column(DateTime, default=utcnow, nullable=False)
    deadline_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    video = relationship("Video", back_populates="stages")

    def __repr__(self):
        return f"<PipelineStage(video_id={self.video_id}, stage={self.stage}, status={self.status})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "deadline_at": self.deadline_at.isoformat() if self.deadline_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
