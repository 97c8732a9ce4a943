from datetime import datetime

from pydantic import BaseModel, Field

# Raw input bounds, well above the post-sanitizing limits, so huge payloads
# are rejected before markup stripping
TITLE_INPUT_MAX_LENGTH = 512
BODY_INPUT_MAX_LENGTH = 16_000


class CommentCreate(BaseModel):
    """Schema for creating a comment. Sanitized and length-checked in the router."""
    title: str = Field(..., max_length=TITLE_INPUT_MAX_LENGTH)
    body: str = Field(..., max_length=BODY_INPUT_MAX_LENGTH)


class CommentResponse(BaseModel):
    """Schema for comment response, joined with the author's username."""
    id: int
    title: str
    body: str
    created_at: datetime

    # User info
    user_id: int
    username: str
