"""Tests for upload and URL import ingestion."""
import pytest
from sqlalchemy import func, select

from content_engine.config import settings
from content_engine.errors import ValidationError
from content_engine.models.video import Video, VideoSource, VideoStatus
from content_engine.services.ingestion_service import IngestionService

from fakes import COMPANY


async def _chunks(*parts):
    for part in parts:
        yield part


async def _video_count(db) -> int:
    return (await db.execute(select(func.count(Video.id)))).scalar_one()


def _stored_files(media_store):
    return list(media_store.root.iterdir())


@pytest.mark.asyncio
async def test_upload_creates_processing_video(db, media_store):
    service = IngestionService(db, media_store)

    video = await service.create_video_from_upload(
        COMPANY, "video/mp4", b"\x00\x00\x00\x18ftypmp42", filename="talk.mp4"
    )

    assert video.id is not None
    assert video.status == VideoStatus.PROCESSING
    assert video.source == VideoSource.UPLOAD
    assert video.company_id == COMPANY
    assert video.name == "talk"
    assert video.media_ref.endswith(".mp4")
    assert await media_store.exists(video.media_ref)
    assert video.metadata_json["original_filename"] == "talk.mp4"


@pytest.mark.asyncio
async def test_upload_accepts_content_type_parameters(db, media_store):
    service = IngestionService(db, media_store)

    video = await service.create_video_from_upload(COMPANY, "video/webm; codecs=vp9", b"webm-bytes")

    assert video.media_ref.endswith(".webm")
    assert video.metadata_json["content_type"] == "video/webm"


@pytest.mark.asyncio
async def test_upload_streams_chunks(db, media_store):
    service = IngestionService(db, media_store)

    video = await service.create_video_from_upload(
        COMPANY, "video/quicktime", _chunks(b"abc", b"def"), filename="clip.mov"
    )

    assert await media_store.get(video.media_ref) == b"abcdef"


@pytest.mark.asyncio
async def test_upload_rejects_unsupported_type(db, media_store):
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError, match="Unsupported media type"):
        await service.create_video_from_upload(COMPANY, "application/pdf", b"%PDF-1.4")

    assert await _video_count(db) == 0
    assert _stored_files(media_store) == []


@pytest.mark.asyncio
async def test_upload_rejects_empty_body(db, media_store):
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError, match="empty"):
        await service.create_video_from_upload(COMPANY, "video/mp4", b"")

    assert await _video_count(db) == 0


@pytest.mark.asyncio
async def test_upload_rejects_declared_oversize(db, media_store):
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError, match="maximum size"):
        await service.create_video_from_upload(
            COMPANY, "video/mp4", _chunks(b"x"), size=settings.max_upload_bytes + 1
        )

    assert await _video_count(db) == 0
    assert _stored_files(media_store) == []


@pytest.mark.asyncio
async def test_upload_rejects_streamed_oversize(db, media_store, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 8)
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError, match="maximum size"):
        await service.create_video_from_upload(COMPANY, "video/mp4", _chunks(b"12345", b"67890"))

    assert await _video_count(db) == 0
    assert _stored_files(media_store) == []


@pytest.mark.asyncio
async def test_upload_requires_company(db, media_store):
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError, match="Company"):
        await service.create_video_from_upload("  ", "video/mp4", b"data")


@pytest.mark.asyncio
async def test_upload_stores_validated_weights(db, media_store):
    service = IngestionService(db, media_store)
    weights = {"hook": 0.4, "emotion": 0.15, "insight": 0.15, "cta": 0.15, "quality": 0.15}

    video = await service.create_video_from_upload(COMPANY, "video/mp4", b"data", weights=weights)

    assert video.metadata_json["virality_weights"] == weights


@pytest.mark.asyncio
async def test_upload_rejects_invalid_weights_without_storing(db, media_store):
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError):
        await service.create_video_from_upload(
            COMPANY, "video/mp4", b"data", weights={"hook": 0.9, "emotion": 0.9}
        )

    assert _stored_files(media_store) == []


@pytest.mark.asyncio
async def test_url_import_creates_downloading_video(db, media_store):
    service = IngestionService(db, media_store)

    video = await service.create_video_from_url(COMPANY, "  https://example.com/watch?v=abc  ", name="Keynote")

    assert video.status == VideoStatus.DOWNLOADING
    assert video.source == VideoSource.URL_IMPORT
    assert video.source_url == "https://example.com/watch?v=abc"
    assert video.name == "Keynote"
    assert video.media_ref is None


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "example.com/video", "ftp://example.com/a.mp4", "https://"])
async def test_url_import_rejects_invalid_urls(db, media_store, url):
    service = IngestionService(db, media_store)

    with pytest.raises(ValidationError, match="Invalid import URL"):
        await service.create_video_from_url(COMPANY, url)

    assert await _video_count(db) == 0
