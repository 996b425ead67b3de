"""Ingestion gateway: uploads and remote URL imports."""
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from content_engine.adapters.base import MediaStore
from content_engine.config import settings
from content_engine.errors import ValidationError
from content_engine.models.video import Video, VideoSource, VideoStatus
from content_engine.pipeline.virality.weights import validate_weights
from content_engine.utils.ytdlp import is_importable_url

logger = logging.getLogger(__name__)

CONTENT_TYPE_SUFFIXES = {
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/x-msvideo": "avi",
    "video/webm": "webm",
    "video/x-matroska": "mkv",
}


def _normalize_content_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


class IngestionService:
    """Creates videos from uploads and URL imports.

    Returns as soon as the Video row exists; the pipeline coordinator picks
    it up from there.
    """

    def __init__(self, db: AsyncSession, media_store: MediaStore):
        self.db = db
        self.media_store = media_store

    def _check_company(self, company_id: str):
        if not company_id or not str(company_id).strip():
            raise ValidationError("Company is required")

    def _metadata(self, weights: Optional[Dict[str, float]]) -> dict:
        if not weights:
            return {}
        return {"virality_weights": validate_weights(weights)}

    async def create_video_from_upload(
        self,
        company_id: str,
        content_type: str,
        data: Union[bytes, AsyncIterator[bytes]],
        filename: Optional[str] = None,
        size: Optional[int] = None,
        weights: Optional[Dict[str, float]] = None,
    ) -> Video:
        """
        Store an uploaded file and create a Video in `processing`.

        Args:
            company_id: Owning company
            content_type: Declared media type
            data: Whole body, or an async iterator of chunks
            filename: Original filename
            size: Declared size in bytes, if known
            weights: Per-caller virality weights

        Raises:
            ValidationError: Bad media type, size or weights (nothing is stored)
        """
        self._check_company(company_id)

        ctype = _normalize_content_type(content_type)
        if ctype not in settings.allowed_upload_types:
            raise ValidationError(
                f"Unsupported media type {content_type!r}; "
                f"allowed: {', '.join(settings.allowed_upload_types)}"
            )

        if isinstance(data, (bytes, bytearray)):
            size = len(data)
        if size is not None:
            if size <= 0:
                raise ValidationError("Upload is empty")
            if size > settings.max_upload_bytes:
                raise ValidationError(
                    f"Upload exceeds the maximum size of {settings.max_upload_bytes} bytes"
                )

        metadata = self._metadata(weights)

        suffix = CONTENT_TYPE_SUFFIXES.get(ctype, "")
        if isinstance(data, (bytes, bytearray)):
            media_ref = await self.media_store.put(bytes(data), suffix=suffix)
        else:
            media_ref = await self.media_store.put_stream(data, settings.max_upload_bytes, suffix=suffix)

        metadata.update({"content_type": ctype, "original_filename": filename})
        video = Video(
            company_id=company_id,
            name=Path(filename).stem if filename else None,
            source=VideoSource.UPLOAD,
            media_ref=media_ref,
            status=VideoStatus.PROCESSING,
            metadata_json=metadata,
        )
        try:
            self.db.add(video)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await self.media_store.delete(media_ref)
            raise

        await self.db.refresh(video)
        logger.info(f"Video {video.id} created from upload {filename!r} ({media_ref})")
        return video

    async def create_video_from_url(
        self,
        company_id: str,
        url: str,
        name: Optional[str] = None,
        weights: Optional[Dict[str, float]] = None,
    ) -> Video:
        """
        Create a Video in `downloading` for a remote URL.

        Raises:
            ValidationError: URL is not an absolute http(s) URL
        """
        self._check_company(company_id)

        url = (url or "").strip()
        if not is_importable_url(url):
            raise ValidationError(f"Invalid import URL: {url!r}")

        video = Video(
            company_id=company_id,
            name=name,
            source=VideoSource.URL_IMPORT,
            source_url=url,
            status=VideoStatus.DOWNLOADING,
            metadata_json=self._metadata(weights),
        )
        self.db.add(video)
        await self.db.commit()
        await self.db.refresh(video)

        logger.info(f"Video {video.id} queued for import from {url}")
        return video
