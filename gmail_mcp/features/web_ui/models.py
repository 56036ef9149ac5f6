from typing import Optional
from pydantic import BaseModel, Field
from gmail_mcp.core.tool_utils import clamped


class StartUIParams(BaseModel):
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    query: str = "is:unread"
    max: clamped(1, 100, 25) = 25
