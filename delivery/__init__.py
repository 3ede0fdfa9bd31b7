import mimetypes
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Attachment:
    data: bytes         # raw file bytes
    media_type: str     # e.g. "image/jpeg", "application/pdf"
    name: str = "attachment"

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str | Path) -> "Attachment":
        path = Path(path)
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(data=path.read_bytes(), media_type=media_type or "application/octet-stream", name=path.name)


class PreviewHandle:
    """A temporary file backing an attachment preview.

    Released exactly once; reading the url afterwards raises.
    """

    def __init__(self, data: bytes, suffix: str = "", directory: str | None = None):
        fd, name = tempfile.mkstemp(prefix="courier-", suffix=suffix, dir=directory)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        self._path: Path | None = Path(name)
        self.released = False

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("preview handle already released")
        return self._path

    @property
    def url(self) -> str:
        return self.path.as_uri()

    def release(self):
        if self._path is None:
            return
        self._path.unlink(missing_ok=True)
        self._path = None
        self.released = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()


@dataclass
class AttachmentRef:
    source: Attachment          # file as the user picked it
    file: Attachment            # file that will actually be uploaded
    kind: str                   # "image" | "video" | "audio" | "file"
    original_size: int
    optimized_size: int
    compression_ratio: float
    preview: PreviewHandle | None = None

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def size(self) -> int:
        return self.file.size

    @property
    def media_type(self) -> str:
        return self.file.media_type

    @property
    def transient_url(self) -> str | None:
        return self.preview.url if self.preview else None

    def release(self):
        if self.preview:
            self.preview.release()


@dataclass
class Message:
    content: str | None = None
    media: list[AttachmentRef] = field(default_factory=list)
    reply_to: str | None = None    # id (or transport timestamp) of the quoted message
    id: str | None = None
    timestamp: int | None = None   # epoch milliseconds
