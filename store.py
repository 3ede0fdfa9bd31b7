import json
import time
from pathlib import Path

JOURNAL = Path(__file__).parent / "data" / "journal.jsonl"


def record(message_id: str, result, error: str | None = None, path: Path = JOURNAL):
    """Append the outcome of one delivery to the journal."""
    path.parent.mkdir(parents=True, exist_ok=True)
    entry = {"id": message_id, "result": result, "error": error, "at": int(time.time() * 1000)}
    with open(path, "a") as f:
        f.write(json.dumps(entry, default=str) + "\n")


def load(max_entries: int = 50, path: Path = JOURNAL) -> list[dict]:
    if not path.exists():
        return []
    lines = path.read_text().strip().split("\n")
    return [json.loads(line) for line in lines[-max_entries:] if line]


def lookup(message_id: str, path: Path = JOURNAL) -> dict | None:
    """Latest journal entry for a message id."""
    if not path.exists():
        return None
    found = None
    for line in path.read_text().splitlines():
        if line:
            entry = json.loads(line)
            if entry["id"] == message_id:
                found = entry
    return found
