"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for message creation and update
- Response models mirroring the store's Message, PaginatedResponse
  and MessageStats types
"""

from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class CreateMessageRequest(BaseModel):
    """
    Body for POST /messages.

    Emptiness after trimming is checked by the store, which reports it as a
    validation error; content is otherwise stored exactly as sent.
    """
    content: str = Field(..., description="Message text")
    parent_id: Optional[int] = Field(
        None,
        description="Id of the message this one replies to"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"content": "Hello board", "parent_id": None}
            ]
        }
    }


class UpdateMessageRequest(BaseModel):
    """Body for PUT /messages/{id}."""
    content: str = Field(..., description="Replacement message text")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class StatusResponse(BaseModel):
    """Response model for successful operations without a payload."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """A single message as returned by every message route."""
    id: int = Field(..., ge=1, description="Sequential message id")
    author: str = Field(..., description="Principal that created the message")
    content: str = Field(..., description="Message text")
    created_at: int = Field(..., description="Creation time, ns since epoch")
    updated_at: Optional[int] = Field(None, description="Last edit time, ns since epoch")
    likes: int = Field(..., ge=0, description="Like counter")
    replies: list[int] = Field(default_factory=list, description="Direct reply ids in order")
    parent_id: Optional[int] = Field(None, description="Parent id if this is a reply")

    model_config = {"from_attributes": True}


class PaginatedMessagesResponse(BaseModel):
    """
    Response model for GET /messages.

    - messages: top-level messages on this page
    - total: number of top-level messages (ignoring pagination)
    - page / total_pages: 1-indexed position
    - has_next / has_previous: navigation flags
    """
    messages: list[MessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=0)
    has_next: bool
    has_previous: bool

    model_config = {"from_attributes": True}


class StatsResponse(BaseModel):
    """Response model for GET /stats."""
    total_messages: int = Field(..., ge=0, description="Messages currently stored")
    total_authors: int = Field(..., ge=0, description="Distinct authors of stored messages")
    messages_today: int = Field(..., ge=0, description="Messages created in the last 24 hours")

    model_config = {"from_attributes": True}


class AuthorMessageCountResponse(BaseModel):
    author: str
    count: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
