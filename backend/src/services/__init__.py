from .hub import BroadcastHub
from .query import QueryService
from .registry import ConnectionRegistry
