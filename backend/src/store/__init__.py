from .store import MessageSequence, MessageStore, SqlMessageStore, make_engine
from .tables import Base, MessageRow
