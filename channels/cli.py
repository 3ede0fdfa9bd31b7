import asyncio
import sys

from channels import Input

PROMPT = "courier> "


async def interactive(on_input, on_activity=None):
    """Read lines from stdin and hand each one to `on_input`.

    `on_activity` is called for every line typed in interactive mode, which
    drives the typing indicator.
    """
    loop = asyncio.get_running_loop()
    is_tty = sys.stdin.isatty()

    if is_tty:
        while True:
            try:
                line = await loop.run_in_executor(None, lambda: input(PROMPT))
            except (EOFError, KeyboardInterrupt):
                break
            if line.strip().lower() in ("exit", "quit"):
                break
            if not line.strip():
                continue
            if on_activity:
                on_activity()
            await on_input(Input(channel="cli", sender="cli", text=line.strip()))
    else:
        # Pipe mode: every non-empty line is its own message
        text = await loop.run_in_executor(None, sys.stdin.read)
        for line in text.splitlines():
            if line.strip():
                await on_input(Input(channel="cli", sender="cli", text=line.strip()))
