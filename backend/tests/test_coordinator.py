"""Tests for the pipeline coordinator and its stage handlers."""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from content_engine.adapters.base import TranscriptionResult
from content_engine.errors import (
    ConcurrencyConflict,
    PermanentProviderError,
    TransientProviderError,
    ValidationError,
)
from content_engine.models.clip import Clip
from content_engine.models.pipeline_stage import PipelineStage, StageName, StageStatus
from content_engine.models.video import FailureReason, Video, VideoStatus
from content_engine.services.ingestion_service import IngestionService
from content_engine.services.transcript_service import TranscriptService
from content_engine.services.video_service import VideoService
from content_engine.utils.clock import utcnow

from fakes import (
    COMPANY,
    CrashingAnalyzer,
    FakeDownloader,
    FakeProber,
    FakeTranscriber,
    bland_transcript,
    create_video,
)


async def _reload(session_factory, video_id):
    async with session_factory() as session:
        return await session.get(Video, video_id)


async def _clips(session_factory, video_id):
    async with session_factory() as session:
        result = await session.execute(select(Clip).where(Clip.video_id == video_id))
        return list(result.scalars().all())


async def _stages(session_factory, video_id):
    async with session_factory() as session:
        result = await session.execute(
            select(PipelineStage).where(PipelineStage.video_id == video_id)
        )
        return {row.stage: row for row in result.scalars().all()}


async def _upload(db, media_store):
    return await IngestionService(db, media_store).create_video_from_upload(
        COMPANY, "video/mp4", b"uploaded-video", filename="talk.mp4"
    )


async def _import(db, media_store, url="https://example.com/watch?v=42"):
    return await IngestionService(db, media_store).create_video_from_url(COMPANY, url)


# =============================================================================
# Happy paths
# =============================================================================

@pytest.mark.asyncio
async def test_upload_reaches_ready_with_bounded_clips(db, media_store, session_factory, make_coordinator, test_settings):
    video = await _upload(db, media_store)
    coordinator = make_coordinator()

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert video.status == VideoStatus.READY
    assert video.failure_reason is None
    assert video.duration == 600.0
    assert video.metadata_json["probe"]["video_codec"] == "h264"

    clips = await _clips(session_factory, video.id)
    assert 0 < len(clips) <= test_settings.max_clips
    for clip in clips:
        assert 0 <= clip.start_time < clip.end_time <= video.duration
        assert test_settings.min_clip_seconds <= clip.duration <= test_settings.max_clip_seconds + 1e-6
        assert clip.status.value == "pending_review"

    stages = await _stages(session_factory, video.id)
    assert set(stages) == {StageName.VALIDATE, StageName.TRANSCRIBE, StageName.ANALYZE}
    assert all(s.status == StageStatus.COMPLETED for s in stages.values())


@pytest.mark.asyncio
async def test_video_without_hooks_is_ready_with_no_clips(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    coordinator = make_coordinator(transcriber=FakeTranscriber(result=bland_transcript(600.0)))

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert video.status == VideoStatus.READY
    assert await _clips(session_factory, video.id) == []


@pytest.mark.asyncio
async def test_url_import_downloads_then_reaches_ready(db, media_store, session_factory, make_coordinator):
    video = await _import(db, media_store)
    downloader = FakeDownloader(media_store, title="Imported keynote")
    coordinator = make_coordinator(downloader=downloader)

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert downloader.calls == ["https://example.com/watch?v=42"]
    assert video.status == VideoStatus.READY
    assert video.name == "Imported keynote"
    assert await media_store.exists(video.media_ref)
    assert StageName.DOWNLOAD in await _stages(session_factory, video.id)


@pytest.mark.asyncio
async def test_empty_transcript_is_ready_with_no_clips(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    coordinator = make_coordinator(transcriber=FakeTranscriber(result=TranscriptionResult(duration=600.0)))

    await coordinator.run_until_idle()

    assert (await _reload(session_factory, video.id)).status == VideoStatus.READY
    assert await _clips(session_factory, video.id) == []


# =============================================================================
# Failures
# =============================================================================

@pytest.mark.asyncio
async def test_slow_download_times_out(db, media_store, session_factory, make_coordinator):
    video = await _import(db, media_store)
    coordinator = make_coordinator(
        downloader=FakeDownloader(media_store, delay=2.0),
        stage_timeout_seconds=0.1,
    )

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert video.status == VideoStatus.FAILED
    assert video.failure_reason == FailureReason.TIMEOUT
    assert "timed out" in video.error_message
    assert (await _stages(session_factory, video.id))[StageName.DOWNLOAD].status == StageStatus.FAILED


@pytest.mark.asyncio
async def test_download_error_fails_video(db, media_store, session_factory, make_coordinator):
    video = await _import(db, media_store)
    downloader = FakeDownloader(media_store, errors=[PermanentProviderError("HTTP 404: video removed")])
    coordinator = make_coordinator(downloader=downloader)

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert video.status == VideoStatus.FAILED
    assert video.failure_reason == FailureReason.DOWNLOAD_ERROR
    assert "video removed" in video.error_message
    assert len(downloader.calls) == 1


@pytest.mark.asyncio
async def test_transient_transcription_errors_are_retried(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    transcriber = FakeTranscriber(errors=[
        TransientProviderError("HTTP 503: overloaded", status_code=503),
        TransientProviderError("HTTP 429: rate limited", status_code=429),
    ])
    coordinator = make_coordinator(transcriber=transcriber)

    await coordinator.run_until_idle()

    assert len(transcriber.calls) == 3
    assert (await _reload(session_factory, video.id)).status == VideoStatus.READY


@pytest.mark.asyncio
async def test_exhausted_transcription_retries_fail_video(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    transcriber = FakeTranscriber(errors=[TransientProviderError("HTTP 503") for _ in range(3)])
    coordinator = make_coordinator(transcriber=transcriber)

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert len(transcriber.calls) == 3
    assert video.status == VideoStatus.FAILED
    assert video.failure_reason == FailureReason.TRANSCRIPTION_ERROR
    async with session_factory() as session:
        assert await TranscriptService(session).get_transcript(video.id) is None


@pytest.mark.asyncio
async def test_permanent_transcription_error_is_not_retried(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    transcriber = FakeTranscriber(errors=[PermanentProviderError("HTTP 401: bad key", status_code=401)])
    coordinator = make_coordinator(transcriber=transcriber)

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert len(transcriber.calls) == 1
    assert video.failure_reason == FailureReason.TRANSCRIPTION_ERROR


@pytest.mark.asyncio
async def test_rejected_codec_is_normalized_once(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    original = video.media_ref
    prober = FakeProber(media_store)
    transcriber = FakeTranscriber(rejects=[original])
    coordinator = make_coordinator(prober=prober, transcriber=transcriber)

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert prober.normalized == [original]
    assert transcriber.calls[0] == original
    assert video.media_ref != original
    assert video.metadata_json["original_media_ref"] == original
    assert video.status == VideoStatus.READY


@pytest.mark.asyncio
async def test_unreadable_media_is_normalized_during_validation(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    prober = FakeProber(media_store, unreadable=[video.media_ref])
    coordinator = make_coordinator(prober=prober)

    await coordinator.run_until_idle()

    reloaded = await _reload(session_factory, video.id)
    assert prober.normalized == [video.media_ref]
    assert reloaded.media_ref != video.media_ref
    assert reloaded.status == VideoStatus.READY


@pytest.mark.asyncio
async def test_zero_duration_media_is_invalid(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    coordinator = make_coordinator(prober=FakeProber(media_store, duration=0.0))

    await coordinator.run_until_idle()

    video = await _reload(session_factory, video.id)
    assert video.status == VideoStatus.FAILED
    assert video.failure_reason == FailureReason.INVALID_MEDIA


@pytest.mark.asyncio
async def test_analysis_crash_keeps_transcript_and_allows_reanalysis(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    crashing = make_coordinator(video_analyzer=CrashingAnalyzer())

    await crashing.run_until_idle()

    failed = await _reload(session_factory, video.id)
    assert failed.status == VideoStatus.FAILED
    assert failed.failure_reason == FailureReason.ANALYSIS_ERROR
    async with session_factory() as session:
        assert await TranscriptService(session).get_transcript(video.id) is not None

    coordinator = make_coordinator()
    moved = await coordinator.request_reanalysis(video.id, company_id=COMPANY)
    assert moved.status == VideoStatus.TRANSCRIBED
    assert moved.failure_reason is None

    await coordinator.run_until_idle()

    assert (await _reload(session_factory, video.id)).status == VideoStatus.READY
    assert await _clips(session_factory, video.id)


@pytest.mark.asyncio
async def test_reanalysis_rules(db, media_store, session_factory, make_coordinator):
    coordinator = make_coordinator()
    no_transcript = await create_video(db, status=VideoStatus.READY)
    processing = await create_video(db, status=VideoStatus.PROCESSING)

    with pytest.raises(ValidationError, match="no transcript"):
        await coordinator.request_reanalysis(no_transcript.id)

    async with session_factory() as session:
        await TranscriptService(session).save_transcript(processing.id, bland_transcript(60.0), 60.0)
        await session.commit()
    with pytest.raises(ValidationError, match="processing"):
        await coordinator.request_reanalysis(processing.id)

    with pytest.raises(ValidationError):
        await coordinator.request_reanalysis(processing.id, weights={"hook": 2.0})


@pytest.mark.asyncio
async def test_reanalysis_refused_while_stage_runs(db, media_store, make_coordinator):
    video = await _upload(db, media_store)
    coordinator = make_coordinator(transcriber=FakeTranscriber(delay=1.0))

    await coordinator.tick()
    with pytest.raises(ConcurrencyConflict):
        await coordinator.request_reanalysis(video.id)

    await coordinator.shutdown()


@pytest.mark.asyncio
async def test_stale_running_stage_expires(db, session_factory, make_coordinator):
    video = await create_video(db, status=VideoStatus.PROCESSING, media_ref=None)
    past = utcnow() - timedelta(minutes=10)
    db.add(PipelineStage(
        video_id=video.id, stage=StageName.VALIDATE, status=StageStatus.RUNNING,
        started_at=past - timedelta(minutes=5), deadline_at=past,
    ))
    await db.commit()
    coordinator = make_coordinator()

    launched = await coordinator.tick()

    assert launched == 0
    video = await _reload(session_factory, video.id)
    assert video.status == VideoStatus.FAILED
    assert video.failure_reason == FailureReason.TIMEOUT
    assert (await _stages(session_factory, video.id))[StageName.VALIDATE].status == StageStatus.FAILED


# =============================================================================
# Claims and concurrency
# =============================================================================

@pytest.mark.asyncio
async def test_competing_coordinators_claim_a_stage_once(db, media_store, session_factory, make_coordinator):
    video = await _upload(db, media_store)
    first = make_coordinator()
    second = make_coordinator()

    launched = await asyncio.gather(first.tick(), second.tick())

    assert sum(launched) == 1
    await first.drain()
    await second.drain()

    async with session_factory() as session:
        count = (await session.execute(
            select(func.count(PipelineStage.id)).where(
                PipelineStage.video_id == video.id, PipelineStage.stage == StageName.VALIDATE
            )
        )).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_claimed_stage_is_skipped_by_other_poller(db, media_store, make_coordinator):
    await _upload(db, media_store)
    first = make_coordinator(transcriber=FakeTranscriber(delay=0.5))
    second = make_coordinator()

    assert await first.tick() == 1
    assert await second.tick() == 0

    await first.drain()


@pytest.mark.asyncio
async def test_concurrency_ceiling(db, media_store, make_coordinator):
    for _ in range(3):
        await _upload(db, media_store)
    coordinator = make_coordinator(pipeline_max_concurrent_videos=2)

    assert await coordinator.tick() == 2
    assert len(coordinator.in_flight) == 2
    assert await coordinator.tick() == 0

    await coordinator.drain()
    assert await coordinator.tick() >= 1
    await coordinator.drain()


# =============================================================================
# Deletion during processing
# =============================================================================

@pytest.mark.asyncio
async def test_delete_cancels_in_flight_stage(db, media_store, session_factory, make_coordinator):
    video = await _import(db, media_store)
    downloader = FakeDownloader(media_store, delay=3.0)
    coordinator = make_coordinator(downloader=downloader)

    await coordinator.tick()
    await asyncio.sleep(0.05)
    assert coordinator.is_video_running(video.id)

    assert await coordinator.cancel_video(video.id) is True
    assert await VideoService(db, media_store).delete_video(video.id, COMPANY) is True

    assert not coordinator.is_video_running(video.id)
    assert await _reload(session_factory, video.id) is None
    assert await _stages(session_factory, video.id) == {}
    assert await coordinator.run_until_idle() == 1


@pytest.mark.asyncio
async def test_delete_without_cancel_discards_late_result(db, media_store, session_factory, make_coordinator):
    video = await _import(db, media_store)
    coordinator = make_coordinator(downloader=FakeDownloader(media_store, delay=0.3))

    await coordinator.tick()
    await asyncio.sleep(0.05)
    await VideoService(db, media_store).delete_video(video.id, COMPANY)

    await coordinator.drain()

    assert await _reload(session_factory, video.id) is None
    assert list(media_store.root.iterdir()) == []
