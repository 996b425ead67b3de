"""Social account model for platform connections."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text
from sqlalchemy.orm import validates

from content_engine.db.database import Base
from content_engine.utils.clock import utcnow


class Platform(str, enum.Enum):
    """Supported social media platforms."""
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE_SHORTS = "youtube_shorts"


class AuthStatus(str, enum.Enum):
    """Account authentication status."""
    NOT_CONNECTED = "not_connected"
    CONNECTED = "connected"
    EXPIRED = "expired"
    ERROR = "error"


# Platform-specific requirements checked when a post is scheduled
PLATFORM_SPECS = {
    Platform.TWITTER: {
        "max_duration": 140,
        "max_text_length": 280,
        "requires_media": False,
    },
    Platform.LINKEDIN: {
        "max_duration": 600,
        "max_text_length": 3000,
        "requires_media": False,
    },
    Platform.FACEBOOK: {
        "max_duration": 240,
        "max_text_length": 63206,
        "requires_media": False,
    },
    Platform.INSTAGRAM: {
        "max_duration": 90,
        "max_text_length": 2200,
        "requires_media": True,
    },
    Platform.TIKTOK: {
        "max_duration": 180,
        "max_text_length": 2200,
        "requires_media": True,
    },
    Platform.YOUTUBE_SHORTS: {
        "max_duration": 60,
        "max_text_length": 5000,
        "requires_media": True,
    },
}


class SocialAccount(Base):
    """A company's connected account on a social platform.

    Rows are owned by the account-management layer; the scheduler only reads them.
    """

    __tablename__ = "social_accounts"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)

    # Platform details
    platform = Column(Enum(Platform), nullable=False)
    handle = Column(String(255), nullable=False)  # @username or channel name
    display_name = Column(String(255), nullable=True)
    platform_user_id = Column(String(255), nullable=True)

    # Authentication
    auth_status = Column(Enum(AuthStatus), default=AuthStatus.NOT_CONNECTED, nullable=False)
    access_token = Column(Text, nullable=True)  # Encrypted in production
    refresh_token = Column(Text, nullable=True)  # Encrypted in production
    token_expires_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @validates("handle")
    def _strip_handle(self, key, value):
        return value.strip() if value else value

    def __repr__(self):
        return f"<SocialAccount(id={self.id}, platform={self.platform}, handle='{self.handle}')>"

    @property
    def is_connected(self) -> bool:
        return self.auth_status == AuthStatus.CONNECTED

    def to_dict(self):
        """Convert to dictionary (excludes sensitive auth data)."""
        return {
            "id": self.id,
            "company_id": self.company_id,
            "platform": self.platform.value,
            "handle": self.handle,
            "display_name": self.display_name,
            "auth_status": self.auth_status.value,
            "platform_user_id": self.platform_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
