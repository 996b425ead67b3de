"""In-memory collaborators and entity builders shared by the tests."""
import asyncio
from datetime import datetime
from typing import List, Optional, Sequence

from content_engine.adapters.base import (
    ClipRenderer,
    DownloadAdapter,
    DownloadResult,
    MediaInfo,
    MediaProber,
    PublishAdapter,
    PublishResult,
    SegmentTiming,
    TranscriptionAdapter,
    TranscriptionResult,
    ViralityAnalyzer,
    WordTiming,
)
from content_engine.errors import UnsupportedMediaError
from content_engine.models.clip import Clip, ClipStatus
from content_engine.models.social_account import AuthStatus, Platform, SocialAccount
from content_engine.models.video import Video, VideoSource, VideoStatus

COMPANY = "acme"
OTHER_COMPANY = "globex"
SOURCE_MEDIA_REF = "5" * 32 + ".mp4"

HOOK_SENTENCES = [
    "Why do you never hear the truth about the 3 money habits that matter most?",
    "What if everything you learned about saving money was completely wrong?",
    "How do you stop making the biggest mistake everyone makes with their budget?",
]

FILLER_SENTENCES = [
    "the team reviewed the quarterly plan and moved on to other items on the agenda.",
    "our office kept the same schedule for the rest of the week without any change.",
    "then the group discussed budgets and agreed to meet again later in the month.",
    "a short summary was sent around after lunch to the whole department as usual.",
]


def build_transcript(
    sentences: Sequence[str],
    start: float = 0.0,
    word_step: float = 0.4,
    word_length: float = 0.35,
    sentence_gap: float = 0.8,
    duration: Optional[float] = None,
) -> TranscriptionResult:
    """Lay sentences out back to back: one segment per sentence, evenly timed words."""
    words: List[WordTiming] = []
    segments: List[SegmentTiming] = []
    t = start
    for sentence in sentences:
        seg_start = t
        for token in sentence.split():
            words.append(WordTiming(token, round(t, 3), round(t + word_length, 3)))
            t += word_step
        seg_end = words[-1].end
        segments.append(SegmentTiming(sentence, seg_start, seg_end))
        t = seg_end + sentence_gap
    return TranscriptionResult(
        full_text=" ".join(sentences),
        language="en",
        duration=duration if duration is not None else (words[-1].end if words else 0.0),
        words=words,
        segments=segments,
    )


def lecture_sentences(duration: float = 600.0) -> List[str]:
    """A hook question followed by three plain sentences, repeated to fill `duration`."""
    sentences = []
    elapsed = 0.0
    i = 0
    while True:
        if i % 4 == 0:
            sentence = HOOK_SENTENCES[(i // 4) % len(HOOK_SENTENCES)]
        else:
            sentence = FILLER_SENTENCES[i % len(FILLER_SENTENCES)]
        length = len(sentence.split()) * 0.4 + 0.8
        if elapsed + length > duration - 1.0:
            break
        sentences.append(sentence)
        elapsed += length
        i += 1
    return sentences


def lecture_transcript(duration: float = 600.0) -> TranscriptionResult:
    return build_transcript(lecture_sentences(duration), duration=duration)


def bland_transcript(duration: float = 600.0) -> TranscriptionResult:
    """Speech with no attention-grabbing opening anywhere."""
    sentences = []
    elapsed = 0.0
    i = 0
    while True:
        sentence = FILLER_SENTENCES[i % len(FILLER_SENTENCES)]
        length = len(sentence.split()) * 0.4 + 0.8
        if elapsed + length > duration - 1.0:
            break
        sentences.append(sentence)
        elapsed += length
        i += 1
    return build_transcript(sentences, duration=duration)


# ── Collaborators ────────────────────────────────────────────

class FakeDownloader(DownloadAdapter):
    def __init__(self, media_store, duration: float = 600.0, title: str = "Imported talk",
                 delay: float = 0.0, errors: Optional[list] = None):
        self.media_store = media_store
        self.duration = duration
        self.title = title
        self.delay = delay
        self.errors = list(errors or [])
        self.calls: List[str] = []

    async def import_from_url(self, url: str) -> DownloadResult:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        media_ref = await self.media_store.put(b"downloaded-video", suffix="mp4")
        return DownloadResult(media_ref=media_ref, duration=self.duration, title=self.title)


class FakeProber(MediaProber):
    def __init__(self, media_store, duration: float = 600.0, unreadable: Sequence[str] = ()):
        self.media_store = media_store
        self.duration = duration
        self.unreadable = set(unreadable)
        self.normalized: List[str] = []

    async def probe(self, media_ref: str) -> MediaInfo:
        if media_ref in self.unreadable:
            raise UnsupportedMediaError(f"cannot decode {media_ref}")
        return MediaInfo(
            duration=self.duration, width=1920, height=1080,
            video_codec="h264", audio_codec="aac", format_name="mp4",
        )

    async def normalize(self, media_ref: str) -> str:
        self.normalized.append(media_ref)
        data = await self.media_store.get(media_ref)
        return await self.media_store.put(data, suffix="mp4")


class FakeRenderer(ClipRenderer):
    def __init__(self, media_store, errors: Optional[list] = None):
        self.media_store = media_store
        self.errors = list(errors or [])
        self.calls = []

    async def render(self, media_ref, start_time, end_time, aspect_ratio, words, caption_style=None) -> str:
        self.calls.append({
            "media_ref": media_ref,
            "start_time": start_time,
            "end_time": end_time,
            "aspect_ratio": aspect_ratio,
            "words": list(words),
            "caption_style": caption_style,
        })
        if self.errors:
            raise self.errors.pop(0)
        return await self.media_store.put(b"rendered-clip", suffix="mp4")


class FakeTranscriber(TranscriptionAdapter):
    def __init__(self, result: Optional[TranscriptionResult] = None,
                 errors: Optional[list] = None, delay: float = 0.0,
                 rejects: Sequence[str] = ()):
        self.result = result if result is not None else lecture_transcript()
        self.errors = list(errors or [])
        self.delay = delay
        self.rejects = set(rejects)
        self.calls: List[str] = []

    async def transcribe(self, media_ref: str) -> TranscriptionResult:
        self.calls.append(media_ref)
        if self.delay:
            await asyncio.sleep(self.delay)
        if media_ref in self.rejects:
            raise UnsupportedMediaError("Whisper: unsupported media (could not decode)")
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class CrashingAnalyzer(ViralityAnalyzer):
    async def analyze(self, transcript, media_ref, weights=None, video_duration=None, avoid=None):
        raise RuntimeError("scoring model crashed")


class FakePublisher(PublishAdapter):
    """Returns (or raises) queued results in order, then succeeds."""

    def __init__(self, platform: str, results: Optional[List] = None,
                 delay: float = 0.0):
        self.platform = platform
        self.results = list(results or [])
        self.delay = delay
        self.calls = []

    async def publish(self, platform, account, content, media_ref) -> PublishResult:
        self.calls.append({"platform": platform, "text": content.text, "media_ref": media_ref})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return PublishResult(
            success=True,
            external_post_id=f"{platform}-{len(self.calls)}",
            platform=platform,
        )


def transient_failure(platform: str) -> PublishResult:
    return PublishResult(success=False, platform=platform, error="HTTP 503: service unavailable", retryable=True)


def permanent_failure(platform: str) -> PublishResult:
    return PublishResult(success=False, platform=platform, error="HTTP 401: invalid token", retryable=False)


# ── Entity builders ──────────────────────────────────────────

async def create_video(
    db,
    company_id: str = COMPANY,
    status: VideoStatus = VideoStatus.READY,
    duration: Optional[float] = 600.0,
    media_ref: Optional[str] = SOURCE_MEDIA_REF,
    source: VideoSource = VideoSource.UPLOAD,
    **kwargs,
) -> Video:
    video = Video(
        company_id=company_id,
        source=source,
        status=status,
        duration=duration,
        media_ref=media_ref,
        metadata_json={},
        **kwargs,
    )
    db.add(video)
    await db.commit()
    await db.refresh(video)
    return video


async def create_clip(
    db,
    video: Video,
    start: float,
    end: float,
    status: ClipStatus = ClipStatus.PENDING_REVIEW,
    score: int = 70,
    scheduled_for: Optional[datetime] = None,
) -> Clip:
    clip = Clip(
        video_id=video.id,
        start_time=start,
        end_time=end,
        duration=end - start,
        virality_score=score,
        virality_hook=score,
        virality_emotion=score,
        virality_insight=score,
        virality_cta=score,
        virality_quality=score,
        ai_title="A clip",
        ai_description="Clip description",
        transcript_excerpt="",
        status=status,
        scheduled_for=scheduled_for,
    )
    db.add(clip)
    await db.commit()
    await db.refresh(clip)
    return clip


async def connect_account(
    db,
    platform: str,
    company_id: str = COMPANY,
    auth_status: AuthStatus = AuthStatus.CONNECTED,
) -> SocialAccount:
    account = SocialAccount(
        company_id=company_id,
        platform=Platform(platform),
        handle=f"@{company_id}_{platform}",
        auth_status=auth_status,
        access_token=f"token-{platform}",
    )
    db.add(account)
    await db.commit()
    await db.refresh(account)
    return account
