"""Filesystem-backed media store."""
import logging
import re
import uuid
from pathlib import Path
from typing import AsyncIterator

from content_engine.adapters.base import MediaStore
from content_engine.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_REF_PATTERN = re.compile(r"^[0-9a-f]{32}(\.[a-z0-9]{1,8})?$")


class LocalMediaStore(MediaStore):
    """Stores media objects as flat files under a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def new_ref(self, suffix: str = "") -> str:
        suffix = suffix.lower().lstrip(".")
        if suffix and not re.fullmatch(r"[a-z0-9]{1,8}", suffix):
            suffix = ""
        return uuid.uuid4().hex + (f".{suffix}" if suffix else "")

    def path_for(self, media_ref: str) -> Path:
        if not _REF_PATTERN.match(media_ref or ""):
            raise ValidationError(f"Invalid media reference: {media_ref!r}")
        return self.root / media_ref

    async def put(self, data: bytes, suffix: str = "") -> str:
        media_ref = self.new_ref(suffix)
        with open(self.path_for(media_ref), "wb") as f:
            f.write(data)
        return media_ref

    async def put_stream(
        self,
        chunks: AsyncIterator[bytes],
        max_bytes: int,
        suffix: str = "",
    ) -> str:
        media_ref = self.new_ref(suffix)
        path = self.path_for(media_ref)
        written = 0
        try:
            with open(path, "wb") as f:
                async for chunk in chunks:
                    written += len(chunk)
                    if written > max_bytes:
                        raise ValidationError(
                            f"Upload exceeds the maximum size of {max_bytes} bytes"
                        )
                    f.write(chunk)
        except BaseException:
            # Never leave a partial object behind
            path.unlink(missing_ok=True)
            raise

        logger.info(f"Stored media {media_ref} ({written} bytes)")
        return media_ref

    async def get(self, media_ref: str) -> bytes:
        path = self.path_for(media_ref)
        if not path.exists():
            raise NotFoundError(f"Media {media_ref} not found")
        return path.read_bytes()

    async def exists(self, media_ref: str) -> bool:
        return self.path_for(media_ref).exists()

    async def delete(self, media_ref: str) -> None:
        path = self.path_for(media_ref)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted media {media_ref}")
