from .schemas import CountResponse, CreateMessageRequest, WSIncoming
