"""HTTP-level tests for the API routes."""
import httpx
import pytest
import pytest_asyncio

from content_engine.adapters.publish import PublishAdapterRegistry
from content_engine.api import routes
from content_engine.container import ServiceContainer
from content_engine.db.database import get_db
from content_engine.main import app

from content_engine.models.clip import ClipStatus

from fakes import (
    COMPANY,
    OTHER_COMPANY,
    FakeDownloader,
    FakeProber,
    FakeRenderer,
    FakeTranscriber,
    connect_account,
    create_clip,
    create_video,
)

HEADERS = {"X-Company-Id": COMPANY}


@pytest_asyncio.fixture
async def client(test_settings, session_factory, media_store, analyzer):
    app.state.container = ServiceContainer.build(
        test_settings,
        session_factory,
        media_store=media_store,
        downloader=FakeDownloader(media_store),
        prober=FakeProber(media_store),
        transcriber=FakeTranscriber(),
        analyzer=analyzer,
        publishers=PublishAdapterRegistry(),
        renderer=FakeRenderer(media_store),
    )

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_company_header_is_required(client):
    response = await client.get("/api/videos")
    assert response.status_code == 422

    response = await client.get("/api/videos", headers={"X-Company-Id": "  "})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_import_video(client):
    response = await client.post(
        "/api/videos/import",
        json={"url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ", "name": "Keynote"},
        headers=HEADERS,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "downloading"
    assert body["source"] == "url_import"
    assert body["company_id"] == COMPANY
    assert body["name"] == "Keynote"


@pytest.mark.asyncio
async def test_import_rejects_bad_url(client):
    response = await client.post("/api/videos/import", json={"url": "ftp://example.com/a.mp4"}, headers=HEADERS)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_upload_video(client):
    response = await client.post(
        "/api/videos/upload",
        files={"file": ("talk.mp4", b"uploaded-video", "video/mp4")},
        data={"weights": '{"hook": 0.4, "emotion": 0.2, "insight": 0.2, "cta": 0.1, "quality": 0.1}'},
        headers=HEADERS,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "processing"
    assert body["media_ref"]


@pytest.mark.asyncio
async def test_upload_rejects_malformed_weights(client):
    response = await client.post(
        "/api/videos/upload",
        files={"file": ("talk.mp4", b"uploaded-video", "video/mp4")},
        data={"weights": "{not json"},
        headers=HEADERS,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_videos_are_scoped_to_company(client, db):
    mine = await create_video(db)
    theirs = await create_video(db, company_id=OTHER_COMPANY)

    listed = await client.get("/api/videos", headers=HEADERS)
    assert [v["id"] for v in listed.json()] == [mine.id]

    response = await client.get(f"/api/videos/{theirs.id}", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["detail"] == "Video not found"

    response = await client.delete(f"/api/videos/{theirs.id}", headers=HEADERS)
    assert response.status_code == 404

    response = await client.delete(f"/api/videos/{mine.id}", headers=HEADERS)
    assert response.json() == {"status": "deleted"}


@pytest.mark.asyncio
async def test_clip_export_and_editing_routes(client, db):
    video = await create_video(db)
    clip = await create_clip(db, video, 0.0, 30.0, status=ClipStatus.APPROVED)

    response = await client.post(f"/api/clips/{clip.id}/export", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["export_media_ref"]

    response = await client.post(
        f"/api/clips/{clip.id}/duplicate", json={"title": "Second take"}, headers=HEADERS
    )
    assert response.status_code == 201
    copy = response.json()
    assert copy["status"] == "pending_review"
    assert copy["ai_title"] == "Second take"

    response = await client.put(
        f"/api/clips/{copy['id']}/timeline", json={"start_time": 5.0, "end_time": 35.0}, headers=HEADERS
    )
    assert response.status_code == 200
    assert (response.json()["start_time"], response.json()["end_time"]) == (5.0, 35.0)

    response = await client.put(
        f"/api/clips/{clip.id}/timeline", json={"start_time": 5.0, "end_time": 35.0}, headers=HEADERS
    )
    assert response.status_code == 400

    response = await client.get(f"/api/clips/{clip.id}/captions", params={"format": "ass"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.text.startswith("[Script Info]")

    response = await client.post(f"/api/clips/{copy['id']}/export", headers=HEADERS)
    assert response.status_code == 400

@pytest.mark.asyncio
async def test_post_review_requires_publishing_rights(client, db):
    await connect_account(db, "linkedin")
    created = await client.post(
        "/api/scheduled-posts",
        json={"platforms": ["linkedin"], "content": "Announcing our new series", "publish_now": True},
        headers=HEADERS,
    )
    assert created.status_code == 201
    post = created.json()
    assert post["approval_status"] == "pending"

    response = await client.post(
        f"/api/scheduled-posts/{post['id']}/review", json={"decision": "approved"}, headers=HEADERS
    )
    assert response.status_code == 403

    response = await client.post(
        f"/api/scheduled-posts/{post['id']}/review",
        json={"decision": "approved"},
        headers={**HEADERS, "X-Can-Publish": "true"},
    )
    assert response.status_code == 200
    assert response.json()["approval_status"] == "approved"

    response = await client.delete(f"/api/scheduled-posts/{post['id']}", headers=HEADERS)
    assert response.json() == {"status": "cancelled"}


@pytest.mark.asyncio
async def test_health_reports_missing_tools(client, monkeypatch):
    monkeypatch.setattr(routes, "check_ffmpeg_available", lambda: True)
    monkeypatch.setattr(routes, "check_ffprobe_available", lambda: True)
    monkeypatch.setattr(routes, "check_ytdlp_available", lambda: False)

    response = await client.get("/api/health")

    body = response.json()
    assert body["status"] == "degraded"
    assert body["scheduler_running"] is False
    assert body["message"] == "Missing dependencies: yt-dlp"
