import logging
from typing import Callable

import aiohttp

from delivery import Attachment
from delivery.errors import TransportError

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class HttpUploader:
    """Streams an attachment to an HTTP endpoint, reporting percent sent."""

    def __init__(self, url: str, chunk_size: int = CHUNK_SIZE, timeout: float = 300):
        self.url = url
        self.chunk_size = chunk_size
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _chunks(self, file: Attachment, progress: Callable[[float], None]):
        total = file.size
        sent = 0
        for start in range(0, total, self.chunk_size):
            chunk = file.data[start:start + self.chunk_size]
            yield chunk
            sent += len(chunk)
            progress(round(sent / total * 100, 1))

    async def upload(self, file: Attachment, progress: Callable[[float], None]):
        headers = {
            "Content-Type": file.media_type,
            "Content-Length": str(file.size),
            "X-File-Name": file.name,
        }
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                resp = await session.post(self.url, data=self._chunks(file, progress), headers=headers)
                if resp.status >= 300:
                    body = await resp.text()
                    log.error("Upload of %s failed: %s %s", file.name, resp.status, body)
                    raise TransportError(f"Upload failed: {resp.status} {body}")
                if resp.content_type == "application/json":
                    return await resp.json()
                return await resp.text()
        except aiohttp.ClientError as e:
            raise TransportError(f"Upload of {file.name} failed: {e}") from e

    async def __call__(self, file: Attachment, progress: Callable[[float], None]):
        return await self.upload(file, progress)
