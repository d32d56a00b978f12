# schemas/chat_schemas.py
from typing import Dict, Literal
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """Represents a single message in the conversation history."""
    role: Literal["user", "assistant"] = Field(..., examples=["user", "assistant"])
    content: str


class ChatRequest(BaseModel):
    """Defines the structure for a chat request body."""
    message: str = Field(..., examples=["hello"])


class ChatResponse(BaseModel):
    """Defines the structure for a non-streaming chat response body."""
    response: str


class DeleteResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    sessions: int


class ModelsResponse(BaseModel):
    models: Dict[str, str]


class ErrorResponse(BaseModel):
    error: str
