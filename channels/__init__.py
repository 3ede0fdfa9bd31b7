from dataclasses import dataclass


@dataclass
class Input:
    channel: str        # "cli"
    sender: str         # who typed it, e.g. "cli"
    text: str           # raw line, commands included
    reply_to: str | None = None  # message being replied to, if any
