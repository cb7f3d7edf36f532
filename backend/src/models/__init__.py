from .errors import (
    ChatError,
    DeliveryError,
    DuplicateConnectionError,
    InvalidArgumentError,
    NotFoundError,
    PersistenceError,
    StorageUnavailableError,
)
from .models import Channel, Connection, Message, WebSocketChannel
