from pydantic import BaseModel


class OpenConversationRequest(BaseModel):
    counterpartId: str


class SendMessageRequest(BaseModel):
    text: str
