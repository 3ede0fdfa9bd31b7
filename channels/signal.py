import base64
import logging

import aiohttp

from delivery import Message
from delivery.errors import TransportError

log = logging.getLogger(__name__)


def _data_uri(media_type: str, name: str, data: bytes) -> str:
    """signal-cli-rest-api inline attachment format."""
    return f"data:{media_type};filename={name};base64,{base64.b64encode(data).decode()}"


class SignalTransport:
    """Sends messages through signal-cli-rest-api.

    Attachments travel inline as base64 data URIs. `reply_to` is treated as
    the Signal timestamp of the quoted message when it is numeric.
    """

    def __init__(self, api_url: str, number: str, recipient: str, timeout: float = 30):
        self.api_url = api_url.rstrip("/")
        self.number = number
        self.recipient = recipient
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _payload(self, message: Message) -> dict:
        payload = {
            "message": message.content or "",
            "number": self.number,
            "recipients": [self.recipient],
            "text_mode": "styled",
        }
        if message.media:
            payload["base64_attachments"] = [
                _data_uri(ref.media_type, ref.name, ref.file.data) for ref in message.media
            ]
        if message.reply_to and str(message.reply_to).isdigit():
            payload["quote_timestamp"] = int(message.reply_to)
            payload["quote_author"] = self.recipient
        return payload

    async def send(self, message: Message) -> int | None:
        """Send one message. Returns the Signal timestamp of the sent message."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                resp = await session.post(f"{self.api_url}/v2/send", json=self._payload(message))
                if resp.status != 201:
                    body = await resp.text()
                    log.error("Signal send failed: %s %s", resp.status, body)
                    raise TransportError(f"Signal send failed: {resp.status} {body}")
                result = await resp.json()
                return result.get("timestamp")
        except aiohttp.ClientError as e:
            raise TransportError(f"Signal send failed: {e}") from e

    async def __call__(self, message: Message) -> int | None:
        return await self.send(message)

    async def set_typing(self, typing: bool):
        """Show or clear the typing indicator. Failures are only logged."""
        method = "PUT" if typing else "DELETE"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                resp = await session.request(
                    method, f"{self.api_url}/v1/typing-indicator/{self.number}",
                    json={"recipient": self.recipient},
                )
                if resp.status not in (200, 201, 204):
                    log.warning("Signal typing indicator failed: %s %s", resp.status, await resp.text())
        except aiohttp.ClientError as e:
            log.warning("Signal typing indicator failed: %s", e)
