"""
Chat Models - Defines structures for chat sessions and their messages.
Field aliases follow the camelCase wire format used by the remote chat store.
"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """A single chat message."""
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user", "assistant"] = "user"
    text: str = ""
    time: str = ""  # Display timestamp assigned at creation
    is_streaming: bool = Field(default=False, alias="isStreaming")
    is_error: bool = Field(default=False, alias="isError")


class Chat(BaseModel):
    """A chat session with its ordered messages."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None  # Assigned by the persistence gateway
    title: str = "New Chat"
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    archived: bool = False
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")
    messages: List[Message] = Field(default_factory=list)

    @property
    def is_transient(self) -> bool:
        """True until the persistence gateway has confirmed an id."""
        return not self.id

    def streaming_message(self) -> Optional[Message]:
        """Return the message currently being streamed, if any."""
        for message in self.messages:
            if message.is_streaming:
                return message
        return None


class SendMessageRequest(BaseModel):
    """Body of a send request."""
    text: str


class ChatUpdateRequest(BaseModel):
    """Partial chat update (rename and/or archive toggle)."""
    title: Optional[str] = None
    archived: Optional[bool] = None
