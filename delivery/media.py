import asyncio
import functools
import io
import logging
import mimetypes
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from delivery import Attachment, AttachmentRef, PreviewHandle
from delivery.errors import FileTooLarge, MediaProcessingError, MediaValidationError, UnsupportedType

log = logging.getLogger(__name__)

MB = 1024 * 1024

SUPPORTED_TYPES = {
    "image": ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"),
    "video": ("video/mp4", "video/webm", "video/ogg"),
    "audio": ("audio/mp3", "audio/mpeg", "audio/wav", "audio/ogg", "audio/m4a"),
    "document": (
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ),
}

MAX_SIZES = {
    "image": 10 * MB,
    "video": 50 * MB,
    "audio": 20 * MB,
    "document": 5 * MB,
}

MAX_IMAGE_SIZE = 1920
QUALITY = 0.8
MAX_FILE_SIZE = 10 * MB

# Pillow format names keyed by media type; anything else is saved as JPEG
_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}


def format_file_size(size: int) -> str:
    """Human readable size, e.g. 1536 -> '1.5 KB'."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value, i = float(size), 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def media_kind(media_type: str) -> str:
    """Map a media type to the attachment kind: image, video, audio or file."""
    for kind in ("image", "video", "audio"):
        if media_type.startswith(kind + "/"):
            return kind
    return "file"


class ImageCodec(Protocol):
    def reencode(self, data: bytes, media_type: str, max_size: int, quality: float) -> bytes: ...


class PillowCodec:
    """Decode, shrink and re-encode images with Pillow."""

    def reencode(self, data: bytes, media_type: str, max_size: int, quality: float) -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                width, height = img.size
                scale = min(1.0, max_size / max(width, height))
                if scale < 1.0:
                    size = (max(1, round(width * scale)), max(1, round(height * scale)))
                    img = img.resize(size, Image.Resampling.LANCZOS)

                fmt = _PIL_FORMATS.get(media_type, "JPEG")
                if fmt == "JPEG" and img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")

                out = io.BytesIO()
                if fmt in ("JPEG", "WEBP"):
                    img.save(out, fmt, quality=max(1, min(95, round(quality * 100))))
                else:
                    img.save(out, fmt, optimize=True)
                return out.getvalue()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise MediaProcessingError(f"Could not re-encode image: {e}") from e


class MediaValidator:
    def __init__(self, supported_types: dict[str, tuple] | None = None, max_sizes: dict[str, int] | None = None):
        self.supported_types = supported_types if supported_types is not None else SUPPORTED_TYPES
        self.max_sizes = max_sizes if max_sizes is not None else MAX_SIZES

    def validate_file(self, file: Attachment, declared_type: str = "image") -> bool:
        if file.media_type not in self.supported_types.get(declared_type, ()):
            raise UnsupportedType(file.media_type, declared_type)
        limit = self.max_sizes.get(declared_type)
        if limit is None:
            raise MediaValidationError(f"No size limit configured for {declared_type} files")
        if file.size > limit:
            raise FileTooLarge(
                file.size, limit,
                f"File too large: {format_file_size(file.size)} (max: {format_file_size(limit)})",
            )
        return True


class MediaOptimizer:
    """Shrinks oversized attachments before upload.

    Files at or below `max_file_size` are never touched. Larger images are
    scaled down and re-encoded; video is passed through as-is.
    """

    def __init__(self, codec: ImageCodec | None = None, max_image_size: int = MAX_IMAGE_SIZE,
                 quality: float = QUALITY, max_file_size: int = MAX_FILE_SIZE, preview_dir: str | None = None):
        self.codec = codec if codec is not None else PillowCodec()
        self.max_image_size = max_image_size
        self.quality = quality
        self.max_file_size = max_file_size
        self.preview_dir = preview_dir

    async def optimize_file(self, file: Attachment, max_image_size: int | None = None,
                            quality: float | None = None, max_file_size: int | None = None) -> Attachment:
        max_image_size = max_image_size if max_image_size is not None else self.max_image_size
        quality = quality if quality is not None else self.quality
        max_file_size = max_file_size if max_file_size is not None else self.max_file_size

        if file.size <= max_file_size:
            return file

        kind = media_kind(file.media_type)
        if kind == "image":
            return await self.compress_image(file, max_image_size, quality)
        if kind == "video":
            return await self.compress_video(file)
        return file

    async def compress_image(self, file: Attachment, max_image_size: int, quality: float) -> Attachment:
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(
            None, self.codec.reencode, file.data, file.media_type, max_image_size, quality,
        )
        log.debug("Compressed %s: %s -> %s", file.name, format_file_size(file.size), format_file_size(len(data)))
        return Attachment(data=data, media_type=file.media_type, name=file.name)

    async def compress_video(self, file: Attachment) -> Attachment:
        # No video transcoding; the original is uploaded.
        return file

    async def create_optimized_file(self, file: Attachment, **options) -> AttachmentRef:
        optimized = await self.optimize_file(file, **options)
        original_size = file.size
        optimized_size = optimized.size
        ratio = 0.0
        if original_size and optimized is not file:
            ratio = round((original_size - optimized_size) / original_size * 100, 1)

        suffix = mimetypes.guess_extension(optimized.media_type) or ""
        loop = asyncio.get_running_loop()
        preview = await loop.run_in_executor(
            None, functools.partial(PreviewHandle, optimized.data, suffix=suffix, directory=self.preview_dir),
        )
        return AttachmentRef(
            source=file,
            file=optimized,
            kind=media_kind(optimized.media_type),
            original_size=original_size,
            optimized_size=optimized_size,
            compression_ratio=ratio,
            preview=preview,
        )

    async def optimize_files(self, files: list[Attachment], **options) -> list[AttachmentRef]:
        results = await asyncio.gather(
            *(self.create_optimized_file(f, **options) for f in files), return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for r in results:
                if isinstance(r, AttachmentRef):
                    r.release()
            raise errors[0]
        return results
