"""Media validation, normalization and clip rendering through ffprobe / ffmpeg."""
import logging
from typing import List, Optional

from content_engine.adapters.base import ClipRenderer, MediaInfo, MediaProber, MediaStore, WordTiming
from content_engine.errors import PermanentProviderError, UnsupportedMediaError
from content_engine.utils.captions import build_ass, resolve_caption_style
from content_engine.utils.ffmpeg import (
    FFmpegError,
    export_clip,
    get_video_info,
    normalize_video,
    resolution_for,
)

logger = logging.getLogger(__name__)


class FFmpegMediaProber(MediaProber):

    def __init__(self, media_store: MediaStore):
        self.media_store = media_store

    async def probe(self, media_ref: str) -> MediaInfo:
        try:
            info = await get_video_info(self.media_store.path_for(media_ref))
        except FFmpegError as e:
            raise UnsupportedMediaError(str(e))

        if info.duration <= 0:
            raise UnsupportedMediaError("Video has no measurable duration")

        return MediaInfo(
            duration=info.duration,
            width=info.width,
            height=info.height,
            video_codec=info.video_codec,
            audio_codec=info.audio_codec,
            format_name=info.format_name,
        )

    async def normalize(self, media_ref: str) -> str:
        new_ref = self.media_store.new_ref("mp4")
        try:
            await normalize_video(
                self.media_store.path_for(media_ref),
                self.media_store.path_for(new_ref),
            )
        except FFmpegError as e:
            await self.media_store.delete(new_ref)
            raise UnsupportedMediaError(str(e))

        logger.info(f"Normalized {media_ref} -> {new_ref}")
        return new_ref


class FFmpegClipRenderer(ClipRenderer):
    """Writes an ASS file next to the media, then cuts, crops and burns it in with ffmpeg."""

    def __init__(self, media_store: MediaStore):
        self.media_store = media_store

    async def render(
        self,
        media_ref: str,
        start_time: float,
        end_time: float,
        aspect_ratio: str,
        words: List[WordTiming],
        caption_style: Optional[dict] = None,
    ) -> str:
        try:
            style = resolve_caption_style(caption_style)
        except ValueError as e:
            raise PermanentProviderError(f"Invalid caption style: {e}")

        subtitles_ref = None
        if style.enabled and words:
            width, height = resolution_for(aspect_ratio)
            subtitles_ref = await self.media_store.put(
                build_ass(words, style, width, height).encode("utf-8"), suffix="ass"
            )

        new_ref = self.media_store.new_ref("mp4")
        try:
            await export_clip(
                self.media_store.path_for(media_ref),
                self.media_store.path_for(new_ref),
                start_time,
                end_time,
                aspect_ratio,
                self.media_store.path_for(subtitles_ref) if subtitles_ref else None,
            )
        except FFmpegError as e:
            await self.media_store.delete(new_ref)
            raise PermanentProviderError(f"Clip render failed: {e}")
        finally:
            if subtitles_ref:
                await self.media_store.delete(subtitles_ref)

        logger.info(
            f"Rendered {media_ref} [{start_time:.2f}-{end_time:.2f}] at {aspect_ratio} "
            f"with {len(words) if subtitles_ref else 0} captioned words -> {new_ref}"
        )
        return new_ref
