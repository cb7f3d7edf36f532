import os

def _env(name: str, default: str) -> str:
    return os.environ.get(f"CHAT_{name}", default)

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(f"CHAT_{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"CHAT_{name} must be an integer, got {raw!r}")

# ------------ Config ------------
DATABASE_URL = _env("DATABASE_URL", "sqlite:///./chat.db")
DEFAULT_TOPIC = _env("DEFAULT_TOPIC", "messages")     # every connection joins this topic
ANONYMOUS_IDENTITY = "anonymous"
CONNECTION_QUEUE_SIZE = _env_int("CONNECTION_QUEUE_SIZE", 100)  # bounded per-connection outbound queue
STORE_PAGE_SIZE = _env_int("STORE_PAGE_SIZE", 200)    # rows fetched per page by lazy sequences
LOG_LEVEL = _env("LOG_LEVEL", "INFO")
HOST = _env("HOST", "0.0.0.0")
PORT = _env_int("PORT", 8000)
# --------------------------------
