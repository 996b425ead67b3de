"""Thin async wrappers around the ffprobe and ffmpeg binaries."""
import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from content_engine.config import settings


class FFmpegError(Exception):
    """ffmpeg or ffprobe could not do what was asked."""


@dataclass
class VideoInfo:
    """What ffprobe reports about a media file."""
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]
    format_name: str
    bit_rate: Optional[int]


def check_ffmpeg_available() -> bool:
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    return shutil.which(settings.ffprobe_path) is not None


def _frame_rate(value: str) -> float:
    # ffprobe reports rates as a fraction, e.g. "30000/1001"
    num, _, den = value.partition("/")
    if not den:
        return float(num)
    return float(num) / float(den) if float(den) > 0 else 30.0


def _number(value, default=0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_probe_output(data: dict) -> VideoInfo:
    """
    Build a VideoInfo from `ffprobe -show_format -show_streams` JSON.

    Raises:
        FFmpegError: If there is no video stream
    """
    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video is None:
        raise FFmpegError("No video stream found")

    fmt = data.get("format", {})
    # Some containers only carry the duration on the stream
    duration = _number(fmt.get("duration")) or _number(video.get("duration"))
    bit_rate = int(_number(fmt.get("bit_rate")))

    return VideoInfo(
        duration=duration,
        width=int(video.get("width", 0)),
        height=int(video.get("height", 0)),
        fps=_frame_rate(video.get("r_frame_rate", "30/1")),
        video_codec=video.get("codec_name", "unknown"),
        audio_codec=audio.get("codec_name") if audio else None,
        format_name=fmt.get("format_name", "unknown"),
        bit_rate=bit_rate or None,
    )


async def _run(cmd: List[str], what: str) -> bytes:
    """Run a tool to completion and return its stdout; the process is killed on cancel."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise FFmpegError(f"{cmd[0]} not found: {e}")

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    if proc.returncode != 0:
        raise FFmpegError(f"{what} failed: {stderr.decode(errors='ignore')[-2000:]}")
    return stdout


async def get_video_info(video_path: str | Path) -> VideoInfo:
    """
    Probe a media file.

    Raises:
        FFmpegError: Missing file, probe failure or unparseable output
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise FFmpegError(f"Video file not found: {video_path}")

    stdout = await _run(
        [
            settings.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path),
        ],
        "ffprobe",
    )
    try:
        data = json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise FFmpegError(f"Unreadable ffprobe output: {e}")
    return parse_probe_output(data)


async def normalize_video(source_path: str | Path, output_path: str | Path) -> Path:
    """Re-encode to H.264/AAC MP4 with the moov atom up front."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    await _run(
        [
            settings.ffmpeg_path, "-y",
            "-i", str(source_path),
            "-c:v", settings.normalize_video_codec,
            "-preset", settings.normalize_video_preset,
            "-crf", str(settings.normalize_video_crf),
            "-pix_fmt", "yuv420p",
            "-c:a", settings.normalize_audio_codec,
            "-b:a", settings.normalize_audio_bitrate,
            "-movflags", "+faststart",
            str(output_path),
        ],
        "Normalization",
    )
    return output_path


async def extract_audio(source_path: str | Path, output_path: str | Path) -> Path:
    """Extract a mono 16 kHz MP3 track for speech recognition."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    await _run(
        [
            settings.ffmpeg_path, "-y",
            "-i", str(source_path),
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-c:a", "libmp3lame",
            "-b:a", settings.transcription_audio_bitrate,
            str(output_path),
        ],
        "Audio extraction",
    )
    return output_path


# Output frame size per clip aspect ratio
ASPECT_RESOLUTIONS = {
    "9:16": (1080, 1920),
    "16:9": (1920, 1080),
    "1:1": (1080, 1080),
    "4:5": (1080, 1350),
}


def resolution_for(aspect_ratio: str) -> tuple[int, int]:
    return ASPECT_RESOLUTIONS.get(aspect_ratio, ASPECT_RESOLUTIONS["9:16"])


def _filter_path(path: str | Path) -> str:
    # Quoted filter argument: backslashes, colons and quotes must be escaped
    value = str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")
    return f"'{value}'"


def build_export_command(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    end_time: float,
    aspect_ratio: str,
    subtitles_path: Optional[str | Path] = None,
) -> List[str]:
    """
    ffmpeg arguments that cut [start_time, end_time], fill the aspect ratio's
    frame by scaling and center-cropping, and burn in an ASS subtitle file.
    """
    width, height = resolution_for(aspect_ratio)
    filters = [
        f"scale={width}:{height}:force_original_aspect_ratio=increase",
        f"crop={width}:{height}",
        "setsar=1",
    ]
    if subtitles_path is not None:
        filters.append(f"ass={_filter_path(subtitles_path)}")

    return [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_time:.3f}",
        "-i", str(source_path),
        "-t", f"{end_time - start_time:.3f}",
        "-vf", ",".join(filters),
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-crf", str(settings.export_video_crf),
        "-pix_fmt", "yuv420p",
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-movflags", "+faststart",
        str(output_path),
    ]


async def export_clip(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    end_time: float,
    aspect_ratio: str = "9:16",
    subtitles_path: Optional[str | Path] = None,
) -> Path:
    """
    Render a clip window of the source video.

    Raises:
        FFmpegError: Missing source or ffmpeg failure
    """
    source_path = Path(source_path)
    if not source_path.exists():
        raise FFmpegError(f"Video file not found: {source_path}")
    if end_time <= start_time:
        raise FFmpegError(f"Empty clip window {start_time:.3f}-{end_time:.3f}")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    await _run(
        build_export_command(source_path, output_path, start_time, end_time, aspect_ratio, subtitles_path),
        "Export",
    )
    return output_path
