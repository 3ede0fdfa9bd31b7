import re
from dataclasses import dataclass

from delivery import Message
from delivery.errors import ValidationError

MAX_LENGTH = 4000
CACHE_SIZE = 100

_WHITESPACE = re.compile(r"\s+")


@dataclass
class Validation:
    valid: bool
    content: str | None = None
    error: str | None = None


class TextNormalizer:
    def __init__(self, max_length: int = MAX_LENGTH, cache_size: int = CACHE_SIZE):
        self.max_length = max_length
        self.cache_size = cache_size
        # dicts keep insertion order, so the first key is always the oldest
        self._cache: dict[str, str] = {}

    def validate(self, content) -> Validation:
        if not content or not isinstance(content, str):
            return Validation(valid=False, error="Invalid text content")
        trimmed = content.strip()
        if not trimmed:
            return Validation(valid=False, error="Text cannot be empty")
        if len(trimmed) > self.max_length:
            return Validation(valid=False, error=f"Text too long (max {self.max_length} characters)")
        return Validation(valid=True, content=trimmed)

    def normalize(self, content):
        """Trim and collapse whitespace runs to a single space."""
        if not content or not isinstance(content, str):
            return content
        cached = self._cache.get(content)
        if cached is not None:
            return cached

        normalized = _WHITESPACE.sub(" ", content.strip())
        if len(self._cache) >= self.cache_size:
            del self._cache[next(iter(self._cache))]
        self._cache[content] = normalized
        return normalized

    def preprocess(self, content) -> str:
        result = self.validate(content)
        if not result.valid:
            raise ValidationError(result.error)
        return self.normalize(result.content)


def validate_message(message: Message | None, max_length: int = MAX_LENGTH) -> list[str]:
    """Return the list of problems with a message. Empty means valid."""
    if message is None:
        return ["Message is required"]

    errors = []
    if not message.content and not message.media and not message.reply_to:
        errors.append("Message must have content, media, or reply")
    if isinstance(message.content, str) and len(message.content.strip()) > max_length:
        errors.append(f"Message content too long (max {max_length} characters)")
    if not isinstance(message.media, list):
        errors.append("Media must be a list")
    return errors
