"""Transcript models: one transcript per video with ordered words and segments."""
from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, Text
from sqlalchemy.orm import relationship

from content_engine.db.database import Base
from content_engine.utils.clock import utcnow


class VideoTranscript(Base):
    """Aligned transcript of a video."""

    __tablename__ = "video_transcripts"

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, unique=True)

    full_text = Column(Text, nullable=False, default="")
    language = Column(String(32), nullable=True)
    duration = Column(Float, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    video = relationship("Video", back_populates="transcript")
    words = relationship(
        "TranscriptWord", back_populates="transcript", order_by="TranscriptWord.position",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    segments = relationship(
        "TranscriptSegment", back_populates="transcript", order_by="TranscriptSegment.position",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self):
        return f"<VideoTranscript(id={self.id}, video_id={self.video_id}, language={self.language})>"


class TranscriptWord(Base):
    """Single word with its timing."""

    __tablename__ = "transcript_words"

    id = Column(Integer, primary_key=True)
    transcript_id = Column(
        Integer, ForeignKey("video_transcripts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    word = Column(String(255), nullable=False)
    start_time = Column(Float, nullable=False)
    end_time = Column(Float, nullable=False)

    transcript = relationship("VideoTranscript", back_populates="words")

    def to_dict(self, offset: float = 0.0):
        return {
            "word": self.word,
            "start_time": round(self.start_time - offset, 3),
            "end_time": round(self.end_time - offset, 3),
        }


class TranscriptSegment(Base):
    """Sentence-scale transcript chunk with its timing."""

    __tablename__ = "transcript_segments"

    id = Column(Integer, primary_key=True)
    transcript_id = Column(
        Integer, ForeignKey("video_transcripts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    start_time = Column(Float, nullable=False)
    end_time = Column(Float, nullable=False)

    transcript = relationship("VideoTranscript", back_populates="segments")

    def to_dict(self, offset: float = 0.0):
        return {
            "text": self.text,
            "start_time": round(self.start_time - offset, 3),
            "end_time": round(self.end_time - offset, 3),
        }
