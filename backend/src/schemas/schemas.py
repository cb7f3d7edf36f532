from typing import Literal, Optional
from pydantic import BaseModel, Field

class CreateMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    sender: str = Field(..., min_length=1)
    topic: Optional[str] = None

class CountResponse(BaseModel):
    count: int

class WSIncoming(BaseModel):
    type: Literal["publish", "subscribe", "unsubscribe", "ping"]
    topic: Optional[str] = None
    content: Optional[str] = None
    sender: Optional[str] = None
    request_id: Optional[str] = None
