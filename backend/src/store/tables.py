from sqlalchemy import BigInteger, Column, Integer, String, Text
from sqlalchemy.orm import declarative_base

from models import Message

Base = declarative_base()


class MessageRow(Base):
    __tablename__ = "messages"

    # autoincrement id doubles as the insertion sequence
    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(Text, nullable=False)
    sender = Column(String(255), nullable=False, index=True)
    timestamp = Column(BigInteger, nullable=False)  # epoch milliseconds

    def to_message(self) -> Message:
        return Message(id=self.id, content=self.content, sender=self.sender, timestamp=self.timestamp)
