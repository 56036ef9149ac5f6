from typing import Optional
from pydantic import BaseModel, Field
from gmail_mcp.core.tool_utils import clamped


class CreateDraftParams(BaseModel):
    to: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    html: Optional[str] = None
    reply_to_message_id: Optional[str] = None


class ReplyDraftParams(BaseModel):
    message_id: str = Field(min_length=1)
    body: str = Field(min_length=1)
    html: Optional[str] = None


class DraftIdParams(BaseModel):
    draft_id: str = Field(min_length=1)


class UpdateDraftParams(DraftIdParams):
    to: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    html: Optional[str] = None


class ListDraftsParams(BaseModel):
    max: clamped(1, 50, 10) = 10
