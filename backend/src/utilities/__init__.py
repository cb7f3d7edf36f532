from .constants import (
    ANONYMOUS_IDENTITY,
    CONNECTION_QUEUE_SIZE,
    DATABASE_URL,
    DEFAULT_TOPIC,
    HOST,
    LOG_LEVEL,
    PORT,
    STORE_PAGE_SIZE,
)
from .logger import setup_logging
from .utility_functions import make_ack, make_error, make_event, make_info, make_pong, now_ms, now_ts
