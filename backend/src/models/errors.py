class ChatError(Exception):
    """Base class for every error the chat core reports to its callers."""

    code = "INTERNAL"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DuplicateConnectionError(ChatError):
    code = "DUPLICATE_CONNECTION"


class PersistenceError(ChatError):
    code = "PERSISTENCE_ERROR"


class StorageUnavailableError(PersistenceError):
    code = "STORAGE_UNAVAILABLE"


class NotFoundError(ChatError):
    code = "NOT_FOUND"


class InvalidArgumentError(ChatError):
    code = "BAD_REQUEST"


class DeliveryError(ChatError):
    """Raised when a frame cannot be handed to a single connection."""

    code = "DELIVERY_FAILED"
