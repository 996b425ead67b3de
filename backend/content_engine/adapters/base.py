"""
Collaborator contracts consumed by the pipeline and the publishing dispatcher.

Each external service (media storage, downloads, media probing, clip rendering, transcription,
virality analysis, platform publishing) is reached through one of the abstract
classes below so the coordinator and dispatcher never depend on a concrete
provider.
"""
import abc
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional


# ── Data transfer objects ────────────────────────────────────

@dataclass
class MediaInfo:
    """Probe result for a stored media object."""
    duration: float
    width: int = 0
    height: int = 0
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    format_name: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None

    def to_dict(self) -> dict:
        return {
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "video_codec": self.video_codec,
            "audio_codec": self.audio_codec,
            "format_name": self.format_name,
        }


@dataclass
class DownloadResult:
    """Outcome of a remote import."""
    media_ref: str
    duration: Optional[float] = None
    title: Optional[str] = None


@dataclass
class WordTiming:
    word: str
    start: float
    end: float


@dataclass
class SegmentTiming:
    text: str
    start: float
    end: float


@dataclass
class TranscriptionResult:
    """Aligned transcript as returned by a transcription provider."""
    full_text: str = ""
    language: Optional[str] = None
    duration: Optional[float] = None
    words: List[WordTiming] = field(default_factory=list)
    segments: List[SegmentTiming] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.words and not self.segments and not self.full_text.strip()


@dataclass
class Candidate:
    """A scored clip window proposed by the virality analyzer."""
    start_time: float
    end_time: float
    subscores: Dict[str, int]
    virality_score: int
    ai_title: Optional[str] = None
    ai_description: Optional[str] = None
    transcript_excerpt: str = ""

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class PublishContent:
    """Content package handed to a publish adapter."""
    text: str
    title: Optional[str] = None
    clip_id: Optional[int] = None
    aspect_ratio: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None


@dataclass
class PublishResult:
    """Unified result of a publish attempt."""
    success: bool
    external_post_id: Optional[str] = None
    url: Optional[str] = None
    platform: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "external_post_id": self.external_post_id,
            "url": self.url,
            "platform": self.platform,
            "error": self.error,
            "retryable": self.retryable,
        }


# ── Contracts ────────────────────────────────────────────────

class MediaStore(abc.ABC):
    """Durable put/get of raw media bytes by reference."""

    @abc.abstractmethod
    async def put(self, data: bytes, suffix: str = "") -> str:
        ...

    @abc.abstractmethod
    async def get(self, media_ref: str) -> bytes:
        ...

    @abc.abstractmethod
    async def put_stream(
        self,
        chunks: AsyncIterator[bytes],
        max_bytes: int,
        suffix: str = "",
    ) -> str:
        """Store a chunked upload, failing once more than max_bytes arrive."""
        ...

    @abc.abstractmethod
    def path_for(self, media_ref: str) -> Path:
        """Local filesystem path for tools that need one (ffmpeg, yt-dlp)."""
        ...

    @abc.abstractmethod
    def new_ref(self, suffix: str = "") -> str:
        ...

    @abc.abstractmethod
    async def exists(self, media_ref: str) -> bool:
        ...

    @abc.abstractmethod
    async def delete(self, media_ref: str) -> None:
        ...


class DownloadAdapter(abc.ABC):
    """Resolves a remote URL into a stored media object."""

    @abc.abstractmethod
    async def import_from_url(self, url: str) -> DownloadResult:
        ...


class MediaProber(abc.ABC):
    """Validates and normalizes stored media."""

    @abc.abstractmethod
    async def probe(self, media_ref: str) -> MediaInfo:
        ...

    @abc.abstractmethod
    async def normalize(self, media_ref: str) -> str:
        """Re-encode into a widely supported container/codec; returns the new ref."""
        ...


class ClipRenderer(abc.ABC):
    """Renders a clip window of stored media into its own media object."""

    @abc.abstractmethod
    async def render(
        self,
        media_ref: str,
        start_time: float,
        end_time: float,
        aspect_ratio: str,
        words: List[WordTiming],
        caption_style: Optional[dict] = None,
    ) -> str:
        """
        Cut, crop to `aspect_ratio` and burn `words` (timed relative to
        `start_time`) in as captions; returns the new ref.
        """
        ...


class TranscriptionAdapter(abc.ABC):

    @abc.abstractmethod
    async def transcribe(self, media_ref: str) -> TranscriptionResult:
        ...


class ViralityAnalyzer(abc.ABC):

    @abc.abstractmethod
    async def analyze(
        self,
        transcript: TranscriptionResult,
        media_ref: Optional[str],
        weights: Optional[Dict[str, float]] = None,
        video_duration: Optional[float] = None,
        avoid: Optional[List[tuple]] = None,
    ) -> List[Candidate]:
        """Ranked candidates, best first. `avoid` lists (start, end) windows already taken."""
        ...


class PublishAdapter(abc.ABC):
    """Delivers a content package to one social platform."""

    platform: str = "unknown"

    @abc.abstractmethod
    async def publish(
        self,
        platform: str,
        account,
        content: PublishContent,
        media_ref: Optional[str],
    ) -> PublishResult:
        ...
