import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from delivery import Attachment, AttachmentRef, Message
from delivery.batching import BatchingQueue
from delivery.clock import LoopScheduler, Scheduler
from delivery.errors import DeliveryFailed, TransportError, ValidationError
from delivery.progress import UploadProgressTracker
from delivery.text import TextNormalizer, validate_message

log = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds, multiplied by the attempt number
CONCURRENCY_LIMIT = 3

Transport = Callable[[Message], Awaitable[Any]]
UploadTransport = Callable[[Attachment, Callable[[float], None]], Awaitable[Any]]
ResultCallback = Callable[[Message, Any, Exception | None], None]


@dataclass
class RetryState:
    attempt: int = 0
    next_delay: float = 0.0


def generate_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class RetryingSender:
    def __init__(self, normalizer: TextNormalizer | None = None, queue: BatchingQueue | None = None,
                 max_retries: int = MAX_RETRIES, retry_delay: float = RETRY_DELAY,
                 concurrency_limit: int = CONCURRENCY_LIMIT, scheduler: Scheduler | None = None):
        self.normalizer = normalizer if normalizer is not None else TextNormalizer()
        self._scheduler = scheduler if scheduler is not None else LoopScheduler()
        self.queue = queue if queue is not None else BatchingQueue(scheduler=self._scheduler)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.concurrency_limit = concurrency_limit

    def optimize_message(self, message: Message) -> Message:
        """Validate and normalize a message, filling in id and timestamp.

        Returns a new Message; the argument is left untouched.
        """
        errors = validate_message(message, self.normalizer.max_length)
        if errors:
            raise ValidationError("; ".join(errors))

        changes = {}
        if message.content:
            changes["content"] = self.normalizer.preprocess(message.content)
        if message.timestamp is None:
            changes["timestamp"] = int(time.time() * 1000)
        if not message.id:
            changes["id"] = generate_message_id()
        return replace(message, media=list(message.media), **changes)

    async def send_message(self, message: Message, transport: Transport):
        msg = self.optimize_message(message)
        state = RetryState()

        while True:
            try:
                return await transport(msg)
            except Exception as e:
                error = e if isinstance(e, TransportError) else TransportError(str(e) or type(e).__name__)
                if error is not e:
                    error.__cause__ = e

            if state.attempt >= self.max_retries:
                log.error("Message %s failed after %d attempts: %s", msg.id, state.attempt + 1, error)
                raise DeliveryFailed(msg.id, state.attempt + 1, error) from error

            state.attempt += 1
            state.next_delay = self.retry_delay * state.attempt
            log.warning("Send of %s failed (%s), retry %d/%d in %.1fs",
                        msg.id, error, state.attempt, self.max_retries, state.next_delay)
            await self._scheduler.sleep(state.next_delay)

    async def send_messages(self, messages: list[Message], transport: Transport) -> list:
        """Send many messages, at most `concurrency_limit` at a time.

        Results come back in input order. A message that exhausts its retries
        leaves its DeliveryFailed in its slot instead of failing the others.
        """
        optimized = [self.optimize_message(m) for m in messages]
        results = []
        for i in range(0, len(optimized), self.concurrency_limit):
            window = optimized[i:i + self.concurrency_limit]
            results.extend(await asyncio.gather(
                *(self.send_message(m, transport) for m in window), return_exceptions=True,
            ))
        return results

    def queue_message(self, message: Message, transport: Transport, on_result: ResultCallback | None = None) -> Message:
        """Hand a message to the batching queue instead of sending right away.

        Validation errors raise here and nothing is queued.
        """
        msg = self.optimize_message(message)

        async def _send(queued: Message):
            try:
                result = await self.send_message(queued, transport)
            except DeliveryFailed as e:
                if on_result is None:
                    raise
                on_result(queued, None, e)
                return None
            if on_result:
                on_result(queued, result, None)
            return result

        self.queue.enqueue(msg, _send)
        return msg

    async def send_media(self, attachments: list[AttachmentRef], upload: UploadTransport, transport: Transport,
                         tracker: UploadProgressTracker, captions: dict[int, str] | None = None) -> list:
        """Upload staged attachments and send one message per attachment.

        Takes ownership of each attachment's preview handle and releases it
        whether or not the send succeeds.
        """
        captions = captions if captions is not None else {}

        async def _send_one(index: int, ref: AttachmentRef):
            try:
                tracker.set_progress(index, 0)
                await upload(ref.file, lambda percent: tracker.set_progress(index, percent))
                result = await self.send_message(
                    Message(content=captions.get(index) or None, media=[ref]), transport,
                )
                tracker.mark_completed(index)
                return result
            except Exception as e:
                log.error("Attachment %d (%s) failed: %s", index, ref.name, e)
                tracker.mark_failed(index, str(e))
                raise
            finally:
                ref.release()

        return await asyncio.gather(
            *(_send_one(i, ref) for i, ref in enumerate(attachments)), return_exceptions=True,
        )

    def clear(self):
        self.queue.clear()
