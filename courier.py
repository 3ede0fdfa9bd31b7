import asyncio
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from channels import Input
from channels.cli import interactive
from delivery import Attachment, AttachmentRef, Message
from delivery.batching import BatchingQueue
from delivery.clock import LoopScheduler, Scheduler
from delivery.errors import DeliveryError
from delivery.media import MediaOptimizer, MediaValidator, format_file_size, media_kind
from delivery.presence import TypingSignaler
from delivery.progress import UploadProgressTracker
from delivery.sender import RetryingSender
from delivery.text import TextNormalizer
import store

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
log = logging.getLogger(__name__)


def load_config() -> dict:
    config_path = Path(__file__).parent / "config.toml"
    if config_path.exists():
        return tomllib.loads(config_path.read_text())
    return {}


@dataclass
class Pipeline:
    normalizer: TextNormalizer
    queue: BatchingQueue
    sender: RetryingSender
    typing: TypingSignaler
    validator: MediaValidator
    optimizer: MediaOptimizer
    tracker: UploadProgressTracker


def build_pipeline(config: dict, scheduler: Scheduler | None = None) -> Pipeline:
    scheduler = scheduler if scheduler is not None else LoopScheduler()
    queue_config = config.get("queue", {})
    sender_config = config.get("sender", {})
    media_config = config.get("media", {})

    normalizer = TextNormalizer()
    queue = BatchingQueue(
        batch_size=queue_config.get("batch_size", 5),
        flush_delay=queue_config.get("flush_delay", 0.1),
        scheduler=scheduler,
    )
    sender = RetryingSender(
        normalizer=normalizer,
        queue=queue,
        max_retries=sender_config.get("max_retries", 3),
        retry_delay=sender_config.get("retry_delay", 1.0),
        concurrency_limit=sender_config.get("concurrency_limit", 3),
        scheduler=scheduler,
    )
    typing = TypingSignaler(
        quiet_period=config.get("typing", {}).get("quiet_period", 0.3),
        scheduler=scheduler,
    )
    optimizer = MediaOptimizer(
        max_image_size=media_config.get("max_image_size", 1920),
        quality=media_config.get("quality", 0.8),
        max_file_size=media_config.get("max_file_size", 5 * 1024 * 1024),
    )
    return Pipeline(
        normalizer=normalizer,
        queue=queue,
        sender=sender,
        typing=typing,
        validator=MediaValidator(),
        optimizer=optimizer,
        tracker=UploadProgressTracker(),
    )


async def _print_send(message: Message):
    names = ", ".join(ref.name for ref in message.media)
    print(f"\n[{message.id}] {message.content or ''}{f' [{names}]' if names else ''}\n")
    return message.id


async def _inline_upload(file: Attachment, progress):
    # Attachments go out inline with the message itself, nothing to upload first.
    progress(100)


@dataclass
class Session:
    """Turns channel input into pipeline calls: text, staged files, sends."""

    pipeline: Pipeline
    transport: object
    upload: object = _inline_upload
    journal: Path = store.JOURNAL
    staged: list[AttachmentRef] = field(default_factory=list)

    def _on_result(self, message: Message, result, error: Exception | None):
        if error:
            log.error("[%s] Delivery failed: %s", message.id, error)
        else:
            log.info("[%s] Delivered", message.id)
        store.record(message.id, result, str(error) if error else None, path=self.journal)

    async def handle(self, inp: Input):
        text = inp.text
        try:
            if text.startswith("/attach "):
                await self.attach(text[len("/attach "):].strip())
            elif text.startswith("/drop "):
                self.drop(int(text[len("/drop "):]))
            elif text == "/send" or text.startswith("/send "):
                await self.send_staged(text[len("/send"):].strip())
            elif text.startswith("/status "):
                self.status(text[len("/status "):].strip())
            elif text == "/history" or text.startswith("/history "):
                self.history(int(text[len("/history"):].strip() or 10))
            else:
                self.pipeline.typing.stop()
                self.pipeline.sender.queue_message(
                    Message(content=text, reply_to=inp.reply_to), self.transport, on_result=self._on_result,
                )
        except (DeliveryError, OSError, ValueError, IndexError) as e:
            print(f"\n{e}\n")

    async def attach(self, path: str):
        file = Attachment.from_path(path)
        kind = media_kind(file.media_type)
        self.pipeline.validator.validate_file(file, "document" if kind == "file" else kind)
        refs = await self.pipeline.optimizer.optimize_files([file])
        self.staged.extend(refs)
        for ref in refs:
            log.info("Staged %s (%s -> %s, %s%% smaller)", ref.name, format_file_size(ref.original_size),
                     format_file_size(ref.optimized_size), ref.compression_ratio)

    def drop(self, index: int):
        ref = self.staged.pop(index)
        ref.release()

    async def send_staged(self, caption: str = ""):
        if not self.staged:
            raise ValueError("Nothing staged. Use /attach <path> first.")
        staged, self.staged = self.staged, []
        results = await self.pipeline.sender.send_media(
            staged, self.upload, self.transport, self.pipeline.tracker, captions={0: caption} if caption else None,
        )
        for ref, result in zip(staged, results):
            if isinstance(result, Exception):
                log.error("%s was not sent: %s", ref.name, result)
        self.pipeline.tracker.clear()

    def status(self, message_id: str):
        entry = store.lookup(message_id, path=self.journal)
        if entry is None:
            raise ValueError(f"No delivery recorded for {message_id}")
        print(f"\n{_describe(entry)}\n")

    def history(self, count: int = 10):
        entries = store.load(max_entries=count, path=self.journal)
        if not entries:
            print("\nNo deliveries yet.\n")
            return
        print("\n" + "\n".join(_describe(entry) for entry in entries) + "\n")

    async def close(self):
        for ref in self.staged:
            ref.release()
        self.staged.clear()
        await self.pipeline.queue.drain()
        self.pipeline.typing.clear()


def _describe(entry: dict) -> str:
    if entry["error"]:
        return f"[{entry['id']}] failed: {entry['error']}"
    return f"[{entry['id']}] delivered: {entry['result']}"


def _log_progress(snapshot):
    for index, entry in snapshot.items():
        log.info("Upload %d: %s%% (%s)", index, entry.percent, entry.status)


async def main():
    config = load_config()
    pipeline = build_pipeline(config)
    pipeline.tracker.add_listener(_log_progress)

    transport = _print_send
    upload = _inline_upload

    signal_config = config.get("signal", {})
    if signal_config.get("enabled", False):
        from channels.signal import SignalTransport
        signal = SignalTransport(
            signal_config.get("api_url", "http://signal-api:8080"),
            signal_config["number"],
            signal_config.get("recipient", signal_config["number"]),
        )
        transport = signal.send
        typing_tasks = set()

        def _on_typing(typing: bool):
            task = asyncio.get_running_loop().create_task(signal.set_typing(typing))
            typing_tasks.add(task)
            task.add_done_callback(typing_tasks.discard)

        pipeline.typing.add_callback(_on_typing)
        log.info("Sending via Signal as %s", signal_config["number"])

    upload_url = config.get("upload", {}).get("url")
    if upload_url:
        from channels.http import HttpUploader
        upload = HttpUploader(upload_url)

    journal = config.get("journal", {}).get("path")
    session = Session(
        pipeline=pipeline,
        transport=transport,
        upload=upload,
        journal=Path(journal) if journal else store.JOURNAL,
    )

    if not config.get("cli", {}).get("enabled", True):
        print("No channels enabled. Enable at least one in config.toml.")
        return

    try:
        await interactive(session.handle, on_activity=pipeline.typing.signal_activity)
    finally:
        await session.close()


def main_cli():
    asyncio.run(main())


if __name__ == "__main__":
    main_cli()
