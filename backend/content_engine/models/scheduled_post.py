"""Scheduled post models."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from content_engine.db.database import Base
from content_engine.utils.clock import utcnow


class PostStatus(str, enum.Enum):
    """Aggregate publication status of a scheduled post."""
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    FAILED = "failed"


class ApprovalStatus(str, enum.Enum):
    """Publishing approval status."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DeliveryStatus(str, enum.Enum):
    """Per-platform delivery status."""
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


class ScheduledPost(Base):
    """A unit of publication work targeting one or more platforms."""

    __tablename__ = "scheduled_posts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    clip_id = Column(Integer, ForeignKey("clips.id", ondelete="SET NULL"), nullable=True, index=True)

    # Content package
    platforms = Column(JSON, nullable=False, default=list)
    content = Column(Text, nullable=False, default="")
    content_overrides = Column(JSON, nullable=False, default=dict)  # platform -> text
    media_paths = Column(JSON, nullable=False, default=list)  # media store refs

    # Scheduling
    scheduled_for = Column(DateTime, nullable=False, index=True)
    status = Column(Enum(PostStatus), default=PostStatus.SCHEDULED, nullable=False, index=True)
    approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False)
    posted_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    deliveries = relationship(
        "PostDelivery", back_populates="post", order_by="PostDelivery.id",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self):
        return f"<ScheduledPost(id={self.id}, status={self.status}, approval={self.approval_status})>"

    def content_for(self, platform: str) -> str:
        """Text for one platform, honouring overrides."""
        overrides = self.content_overrides or {}
        return overrides.get(platform) or self.content or ""


class PostDelivery(Base):
    """Delivery of a scheduled post to a single platform."""

    __tablename__ = "post_deliveries"
    __table_args__ = (
        UniqueConstraint("post_id", "platform", name="uq_post_delivery_platform"),
    )

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("scheduled_posts.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String(32), nullable=False)

    status = Column(Enum(DeliveryStatus), default=DeliveryStatus.SCHEDULED, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    next_attempt_at = Column(DateTime, nullable=True)

    # Dispatch claim
    claim_token = Column(String(64), nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    # Outcome
    external_post_id = Column(String(255), nullable=True)
    posted_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    post = relationship("ScheduledPost", back_populates="deliveries")

    def __repr__(self):
        return f"<PostDelivery(id={self.id}, platform={self.platform}, status={self.status})>"

    def to_dict(self):
        return {
            "id": self.id,
            "platform": self.platform,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "external_post_id": self.external_post_id,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "error_message": self.error_message,
        }
