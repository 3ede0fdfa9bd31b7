class DeliveryError(Exception):
    pass


class ValidationError(DeliveryError):
    """Message content or structure is invalid. Never retried."""


class MediaValidationError(DeliveryError):
    pass


class UnsupportedType(MediaValidationError):
    def __init__(self, media_type: str, declared_type: str):
        super().__init__(f"Unsupported file type: {media_type} (expected {declared_type})")
        self.media_type = media_type
        self.declared_type = declared_type


class FileTooLarge(MediaValidationError):
    def __init__(self, size: int, limit: int, detail: str):
        super().__init__(detail)
        self.size = size
        self.limit = limit


class TransportError(DeliveryError):
    """The transport rejected a send or upload."""


class DeliveryFailed(DeliveryError):
    def __init__(self, message_id: str | None, attempts: int, last_error: TransportError):
        super().__init__(f"Message {message_id} failed after {attempts} attempts: {last_error}")
        self.message_id = message_id
        self.attempts = attempts
        self.last_error = last_error


class MediaProcessingError(DeliveryError):
    """Image decode/encode failed. The original file can still be sent as-is."""
