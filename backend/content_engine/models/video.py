"""Video model."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Float, JSON, Text
from sqlalchemy.orm import relationship

from content_engine.db.database import Base
from content_engine.utils.clock import utcnow


class VideoSource(str, enum.Enum):
    """How the source media reached us."""
    UPLOAD = "upload"
    URL_IMPORT = "url_import"


class VideoStatus(str, enum.Enum):
    """Pipeline status enumeration."""
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    TRANSCRIBED = "transcribed"
    ANALYZED = "analyzed"
    READY = "ready"
    FAILED = "failed"


TERMINAL_VIDEO_STATUSES = frozenset({VideoStatus.READY, VideoStatus.FAILED})


class FailureReason(str, enum.Enum):
    """Why a video ended up failed."""
    DOWNLOAD_ERROR = "download_error"
    INVALID_MEDIA = "invalid_media"
    TRANSCRIPTION_ERROR = "transcription_error"
    ANALYSIS_ERROR = "analysis_error"
    TIMEOUT = "timeout"


class Video(Base):
    """Video model representing a source video moving through the pipeline."""

    __tablename__ = "videos"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=True)

    # Source information
    source = Column(Enum(VideoSource), nullable=False)
    source_url = Column(String(2048), nullable=True)  # For URL imports
    media_ref = Column(String(512), nullable=True)  # Media store key once stored

    # Video metadata
    duration = Column(Float, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    # Status
    status = Column(Enum(VideoStatus), nullable=False, index=True)
    failure_reason = Column(Enum(FailureReason), nullable=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships (rows are removed by ON DELETE CASCADE)
    transcript = relationship(
        "VideoTranscript", back_populates="video", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    clips = relationship("Clip", back_populates="video", cascade="all, delete-orphan", passive_deletes=True)
    stages = relationship("PipelineStage", back_populates="video", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Video(id={self.id}, status={self.status})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "source": self.source.value,
            "source_url": self.source_url,
            "media_ref": self.media_ref,
            "duration": self.duration,
            "metadata": self.metadata_json or {},
            "status": self.status.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
