"""Speech-to-text through the OpenAI Whisper transcription API."""
import logging
from pathlib import Path
from typing import Optional, Tuple

import httpx

from content_engine.adapters.base import (
    MediaStore,
    SegmentTiming,
    TranscriptionAdapter,
    TranscriptionResult,
    WordTiming,
)
from content_engine.adapters.http_errors import error_for_response
from content_engine.config import settings
from content_engine.errors import PermanentProviderError, TransientProviderError, UnsupportedMediaError
from content_engine.utils.ffmpeg import FFmpegError, extract_audio, get_video_info

logger = logging.getLogger(__name__)

PROVIDER = "Whisper"


def parse_verbose_json(payload: dict) -> TranscriptionResult:
    """Convert a `verbose_json` transcription payload into a TranscriptionResult."""
    words = [
        WordTiming(
            word=str(w.get("word", "")).strip(),
            start=float(w.get("start", 0.0)),
            end=float(w.get("end", 0.0)),
        )
        for w in payload.get("words") or []
        if str(w.get("word", "")).strip()
    ]
    segments = [
        SegmentTiming(
            text=str(s.get("text", "")).strip(),
            start=float(s.get("start", 0.0)),
            end=float(s.get("end", 0.0)),
        )
        for s in payload.get("segments") or []
        if str(s.get("text", "")).strip()
    ]
    duration = payload.get("duration")
    return TranscriptionResult(
        full_text=str(payload.get("text") or "").strip(),
        language=payload.get("language"),
        duration=float(duration) if duration is not None else None,
        words=words,
        segments=segments,
    )


class WhisperTranscriptionAdapter(TranscriptionAdapter):
    """Extracts the audio track with ffmpeg and uploads it to the transcription endpoint."""

    def __init__(
        self,
        media_store: MediaStore,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.media_store = media_store
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.model = model or settings.transcription_model
        self.timeout = timeout or settings.transcription_timeout_seconds

    async def _prepare_audio(self, media_ref: str) -> Tuple[Optional[Path], Optional[float]]:
        """Return (audio_path, duration); audio_path is None when there is no audio track."""
        source_path = self.media_store.path_for(media_ref)
        try:
            info = await get_video_info(source_path)
        except FFmpegError as e:
            raise UnsupportedMediaError(str(e))

        if not info.audio_codec:
            return None, info.duration

        audio_path = self.media_store.path_for(self.media_store.new_ref("mp3"))
        try:
            await extract_audio(source_path, audio_path)
        except FFmpegError as e:
            audio_path.unlink(missing_ok=True)
            raise UnsupportedMediaError(str(e))
        return audio_path, info.duration

    async def transcribe(self, media_ref: str) -> TranscriptionResult:
        if not self.api_key:
            raise PermanentProviderError(f"{PROVIDER}: API key not configured")

        audio_path, duration = await self._prepare_audio(media_ref)
        if audio_path is None:
            logger.info(f"No audio track in {media_ref}; returning empty transcript")
            return TranscriptionResult(duration=duration)

        try:
            payload = await self._request(audio_path)
        finally:
            audio_path.unlink(missing_ok=True)

        result = parse_verbose_json(payload)
        if result.duration is None:
            result.duration = duration
        logger.info(
            f"Transcribed {media_ref}: {len(result.words)} words, "
            f"{len(result.segments)} segments, language={result.language}"
        )
        return result

    async def _request(self, audio_path: Path) -> dict:
        data = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": ["word", "segment"],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                with open(audio_path, "rb") as audio_file:
                    response = await client.post(
                        f"{self.base_url}/audio/transcriptions",
                        headers=headers,
                        data=data,
                        files={"file": (audio_path.name, audio_file, "audio/mpeg")},
                    )
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"{PROVIDER}: request timed out") from exc
        except httpx.RequestError as exc:
            raise TransientProviderError(f"{PROVIDER}: network error ({type(exc).__name__})") from exc

        if response.status_code != 200:
            raise error_for_response(response, PROVIDER)

        try:
            return response.json()
        except ValueError as exc:
            raise TransientProviderError(f"{PROVIDER}: invalid JSON response") from exc
