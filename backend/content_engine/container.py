"""Wiring of collaborators, coordinator, dispatcher and scheduler."""
from dataclasses import dataclass
from typing import Optional

from content_engine.adapters.base import (
    DownloadAdapter,
    ClipRenderer,
    MediaProber,
    MediaStore,
    TranscriptionAdapter,
    ViralityAnalyzer,
)
from content_engine.adapters.download import YtdlpDownloadAdapter
from content_engine.adapters.media import FFmpegClipRenderer, FFmpegMediaProber
from content_engine.adapters.media_store import LocalMediaStore
from content_engine.adapters.publish import PublishAdapterRegistry
from content_engine.adapters.transcription import WhisperTranscriptionAdapter
from content_engine.pipeline.virality.config import ViralityConfig
from content_engine.pipeline.virality.runner import TranscriptViralityAnalyzer
from content_engine.pipeline.virality.titles import OpenAITitleWriter
from content_engine.workers.coordinator import PipelineCoordinator
from content_engine.workers.dispatcher import PublishDispatcher
from content_engine.workers.handlers import StageHandlers
from content_engine.workers.scheduler import PipelineScheduler


@dataclass
class ServiceContainer:
    """Everything the API and the background loops share. Lives on app.state."""
    settings: object
    session_factory: object
    media_store: MediaStore
    downloader: DownloadAdapter
    prober: MediaProber
    renderer: ClipRenderer
    transcriber: TranscriptionAdapter
    analyzer: ViralityAnalyzer
    publishers: PublishAdapterRegistry
    coordinator: PipelineCoordinator
    dispatcher: PublishDispatcher
    scheduler: Optional[PipelineScheduler] = None

    @classmethod
    def build(
        cls,
        settings,
        session_factory,
        media_store: Optional[MediaStore] = None,
        downloader: Optional[DownloadAdapter] = None,
        prober: Optional[MediaProber] = None,
        transcriber: Optional[TranscriptionAdapter] = None,
        analyzer: Optional[ViralityAnalyzer] = None,
        publishers: Optional[PublishAdapterRegistry] = None,
        renderer: Optional[ClipRenderer] = None,
    ) -> "ServiceContainer":
        """Build the container, using production adapters for anything not supplied."""
        media_store = media_store or LocalMediaStore(settings.media_dir)
        downloader = downloader or YtdlpDownloadAdapter(media_store)
        prober = prober or FFmpegMediaProber(media_store)
        renderer = renderer or FFmpegClipRenderer(media_store)
        transcriber = transcriber or WhisperTranscriptionAdapter(
            media_store,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.transcription_model,
            timeout=settings.transcription_timeout_seconds,
        )
        if analyzer is None:
            title_writer = OpenAITitleWriter(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                model=settings.title_model,
                timeout=settings.title_timeout_seconds,
            )
            analyzer = TranscriptViralityAnalyzer(ViralityConfig.from_settings(settings), title_writer)
        publishers = publishers or PublishAdapterRegistry.from_settings()

        handlers = StageHandlers(
            session_factory, media_store, downloader, prober, transcriber, analyzer, settings
        )
        coordinator = PipelineCoordinator(session_factory, handlers, settings)
        dispatcher = PublishDispatcher(session_factory, publishers, settings, renderer, media_store)

        return cls(
            settings=settings,
            session_factory=session_factory,
            media_store=media_store,
            downloader=downloader,
            prober=prober,
            renderer=renderer,
            transcriber=transcriber,
            analyzer=analyzer,
            publishers=publishers,
            coordinator=coordinator,
            dispatcher=dispatcher,
            scheduler=PipelineScheduler(coordinator, dispatcher, settings),
        )
