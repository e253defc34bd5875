"""Upload processing for issue screenshots.

Uploads are decoded with Pillow, flattened to RGB, shrunk to fit inside
the configured bounds (never enlarged) and stored as JPEG files named
``<timestamp>_<random>.jpg`` under the upload directory.
"""
from __future__ import annotations

import asyncio
import io
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Tuple

import aiofiles
import structlog
from PIL import Image, UnidentifiedImageError

from casegen.config.settings import settings
from casegen.core.exceptions import ImageProcessingError, InputValidationError
from casegen.models.schemas import ImageDescriptor

logger = structlog.get_logger()


class ImageProcessor:
    """Validate, compress and store uploaded images."""

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        max_size: Optional[Tuple[int, int]] = None,
        quality: Optional[int] = None,
        allowed_types: Optional[Iterable[str]] = None,
        max_bytes: Optional[int] = None,
        background: Tuple[int, int, int] = (255, 255, 255),
    ):
        self.upload_dir = Path(upload_dir or settings.upload_dir)
        self.max_size = max_size or (settings.image_max_width, settings.image_max_height)
        self.quality = quality or settings.image_jpeg_quality
        self.allowed_types = set(allowed_types or settings.allowed_image_types)
        self.max_bytes = max_bytes or settings.max_upload_bytes
        self.background = background

    def validate(self, original_name: str, content_type: Optional[str], data: bytes) -> None:
        if content_type not in self.allowed_types:
            raise InputValidationError(
                f"Invalid file type for {original_name}. Only {', '.join(sorted(self.allowed_types))} are allowed."
            )
        if not data:
            raise InputValidationError(f"File {original_name} is empty")
        if len(data) > self.max_bytes:
            raise InputValidationError(
                f"File {original_name} is larger than {self.max_bytes // (1024 * 1024)}MB"
            )

    def _compress(self, data: bytes) -> Tuple[bytes, int, int]:
        """Return (jpeg bytes, original width, original height)."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                width, height = img.size
                if img.mode in ("RGBA", "LA", "P"):
                    img = img.convert("RGBA")
                    flattened = Image.new("RGB", img.size, self.background)
                    flattened.paste(img, mask=img.split()[-1])
                    img = flattened
                elif img.mode != "RGB":
                    img = img.convert("RGB")
                img.thumbnail(self.max_size, Image.Resampling.LANCZOS)
                out = io.BytesIO()
                img.save(out, format="JPEG", quality=self.quality, optimize=True)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageProcessingError(f"Cannot decode image: {e}") from e
        return out.getvalue(), width, height

    @staticmethod
    def new_filename() -> str:
        return f"{int(time.time() * 1000)}_{secrets.token_hex(6)}.jpg"

    async def process_upload(self, original_name: str, content_type: Optional[str], data: bytes) -> ImageDescriptor:
        self.validate(original_name, content_type, data)
        # Pillow work is CPU bound; keep it off the event loop
        jpeg, width, height = await asyncio.get_running_loop().run_in_executor(None, self._compress, data)

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        stored_name = self.new_filename()
        path = self.upload_dir / stored_name
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(jpeg)
        except OSError as e:
            raise ImageProcessingError(f"Cannot store image {original_name}: {e}") from e

        logger.info("Processed image", original_name=original_name, stored_name=stored_name,
                    original_bytes=len(data), stored_bytes=len(jpeg), width=width, height=height)
        return ImageDescriptor(
            original_name=original_name,
            stored_name=stored_name,
            storage_path=str(path),
            mime_type="image/jpeg",
            byte_size=len(jpeg),
            original_byte_size=len(data),
            width=width,
            height=height,
            uploaded_at=datetime.now(timezone.utc),
        )


def cleanup_old_images(upload_dir: Optional[str] = None, max_age_hours: float = 24) -> int:
    """Delete uploaded files older than ``max_age_hours``; returns how many were removed.

    Runs outside the request path and independently of session TTLs.
    A file that cannot be inspected or removed is logged and skipped.
    """
    directory = Path(upload_dir or settings.upload_dir)
    if not directory.is_dir():
        logger.info("Upload directory does not exist, nothing to clean", upload_dir=str(directory))
        return 0

    cutoff = time.time() - max_age_hours * 3600
    removed = 0
    for path in directory.iterdir():
        if not path.is_file():
            continue
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
                logger.info("Cleaned up old image", file=path.name)
        except OSError as e:
            logger.warning("Failed to clean up old image", file=path.name, error=str(e))
    return removed
