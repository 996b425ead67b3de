"""Remote import through yt-dlp."""
import logging
import uuid

from content_engine.adapters.base import DownloadAdapter, DownloadResult, MediaStore
from content_engine.errors import PermanentProviderError
from content_engine.utils.ffmpeg import FFmpegError, get_video_info
from content_engine.utils.ytdlp import YtdlpError, download_video, fetch_metadata

logger = logging.getLogger(__name__)


class YtdlpDownloadAdapter(DownloadAdapter):
    """Resolves a URL, then downloads it straight into the media store's directory."""

    def __init__(self, media_store: MediaStore):
        self.media_store = media_store

    async def import_from_url(self, url: str) -> DownloadResult:
        base_name = uuid.uuid4().hex
        output_dir = self.media_store.path_for(base_name).parent

        try:
            metadata = await fetch_metadata(url)
            downloaded_path = await download_video(url=url, output_dir=output_dir, filename=base_name)
        except (YtdlpError, FileNotFoundError) as e:
            raise PermanentProviderError(f"Download failed: {e}")

        media_ref = downloaded_path.name
        try:
            info = await get_video_info(downloaded_path)
        except FFmpegError as e:
            await self.media_store.delete(media_ref)
            raise PermanentProviderError(f"Downloaded file is not a playable video: {e}")

        logger.info(f"Imported {url} as {media_ref} ({info.duration:.1f}s)")
        return DownloadResult(
            media_ref=media_ref,
            duration=info.duration,
            title=metadata.get("title") or "Untitled Video",
        )
