"""yt-dlp wrappers for remote video import."""
import asyncio
import json
import logging
import re
import shutil
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from content_engine.config import settings

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = ("mp4", "mkv", "webm", "mov")

# bv* requires a video stream, so audio-only formats are never selected
FORMAT_SELECTOR = "bv*[ext=mp4]+ba[ext=m4a]/bv*[ext=mp4]+ba/bv*+ba/bv*"

_OUTPUT_PATTERNS = (
    re.compile(r'Merging formats into "(?P<path>.+)"'),
    re.compile(r"Destination:\s+(?P<path>.+)"),
    re.compile(r"\[download\]\s+(?P<path>.+\.(?:mp4|mkv|webm|mov))\s+has already been downloaded"),
)


class YtdlpError(Exception):
    """yt-dlp could not fetch the URL."""


def check_ytdlp_available() -> bool:
    return shutil.which(settings.ytdlp_path) is not None


def is_importable_url(url: str) -> bool:
    """Check that a URL is absolute http(s) with a host."""
    if not url or len(url) > 2048:
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_output_path(line: str) -> Optional[Path]:
    """Pick a written file path out of one line of yt-dlp output."""
    for pattern in _OUTPUT_PATTERNS:
        match = pattern.search(line)
        if match:
            return Path(match.group("path").strip())
    return None


async def fetch_metadata(url: str) -> dict:
    """
    Read a URL's metadata without downloading it.

    Raises:
        YtdlpError: yt-dlp failed or printed something other than JSON
    """
    proc = await asyncio.create_subprocess_exec(
        settings.ytdlp_path, "--dump-json", "--no-download", "--no-playlist", url,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise YtdlpError(f"Metadata lookup failed: {stderr.decode(errors='ignore')[-500:]}")

    try:
        return json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise YtdlpError(f"Unreadable metadata: {e}")


def _find_download(output_dir: Path, filename: str, reported: Optional[Path]) -> Optional[Path]:
    if reported is not None and reported.exists():
        return reported
    for ext in VIDEO_EXTENSIONS:
        candidate = output_dir / f"{filename}.{ext}"
        if candidate.exists() and candidate.stat().st_size > 1000:
            return candidate
    return None


async def download_video(url: str, output_dir: Path, filename: str) -> Path:
    """
    Download the best video+audio into `output_dir/filename.<ext>`, merged to MP4 where possible.

    Raises:
        YtdlpError: Download failed or produced no file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ytdlp_path,
        "-f", FORMAT_SELECTOR,
        "--merge-output-format", "mp4",
        "-o", str(output_dir / f"{filename}.%(ext)s"),
        "--no-playlist",
        "--newline",
        "--force-overwrites",
        url,
    ]
    logger.info(f"Running yt-dlp for {url}")

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )

    reported: Optional[Path] = None
    tail: List[str] = []
    try:
        async for raw in proc.stdout:
            line = raw.decode("utf-8", errors="ignore").strip()
            tail = (tail + [line])[-20:]
            # A merge line supersedes an earlier per-format destination
            reported = parse_output_path(line) or reported
        await proc.wait()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    if proc.returncode != 0:
        logger.error("yt-dlp failed:\n" + "\n".join(tail))
        raise YtdlpError("Download failed; check the URL and try again")

    path = _find_download(output_dir, filename, reported)
    if path is None:
        logger.error("yt-dlp finished without a video file:\n" + "\n".join(tail))
        raise YtdlpError("Download completed but video file not found")
    return path
