"""Shared fixtures: a fresh SQLite database per test and in-memory collaborators."""
import pytest
import pytest_asyncio

from content_engine.adapters.media_store import LocalMediaStore
from content_engine.adapters.publish import PublishAdapterRegistry
from content_engine.config import settings
from content_engine.db.database import create_engine_for, create_session_maker, init_db
from content_engine.pipeline.virality.config import ViralityConfig
from content_engine.pipeline.virality.runner import TranscriptViralityAnalyzer
from content_engine.pipeline.virality.titles import HeuristicTitleWriter
from content_engine.workers.coordinator import PipelineCoordinator
from content_engine.workers.dispatcher import PublishDispatcher
from content_engine.workers.handlers import StageHandlers

from fakes import FakeDownloader, FakeProber, FakeRenderer, FakeTranscriber


@pytest.fixture
def test_settings(tmp_path):
    return settings.model_copy(update={
        "media_dir": tmp_path / "media",
        "stage_timeout_seconds": 5.0,
        "provider_max_attempts": 3,
        "provider_backoff_seconds": 0.0,
        "publish_max_retries": 3,
        "publish_retry_backoff_seconds": 60.0,
        "dispatch_claim_timeout_seconds": 600.0,
        "publish_timeout_seconds": 5.0,
        "scheduler_enabled": False,
    })


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_maker(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def media_store(test_settings):
    return LocalMediaStore(test_settings.media_dir)


@pytest.fixture
def analyzer(test_settings):
    return TranscriptViralityAnalyzer(ViralityConfig.from_settings(test_settings), HeuristicTitleWriter())


@pytest.fixture
def make_coordinator(session_factory, media_store, test_settings, analyzer):
    """Build a coordinator over fakes; keyword overrides go into the settings."""

    def _make(downloader=None, prober=None, transcriber=None, video_analyzer=None, **overrides):
        cfg = test_settings.model_copy(update=overrides) if overrides else test_settings
        handlers = StageHandlers(
            session_factory,
            media_store,
            downloader or FakeDownloader(media_store),
            prober or FakeProber(media_store),
            transcriber or FakeTranscriber(),
            video_analyzer or analyzer,
            cfg,
        )
        return PipelineCoordinator(session_factory, handlers, cfg)

    return _make


@pytest.fixture
def make_dispatcher(session_factory, media_store, test_settings):
    """Build a dispatcher over the given platform -> adapter mapping."""

    def _make(publishers=None, renderer=None, **overrides):
        cfg = test_settings.model_copy(update=overrides) if overrides else test_settings
        return PublishDispatcher(
            session_factory,
            PublishAdapterRegistry(publishers or {}),
            cfg,
            renderer=renderer or FakeRenderer(media_store),
            media_store=media_store,
        )

    return _make
