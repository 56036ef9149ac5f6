from typing import List, Optional, Union
from pydantic import BaseModel, Field
from gmail_mcp.core.tool_utils import clamped


class ListUnreadParams(BaseModel):
    max: clamped(1, 50, 10) = 10


class RecentUnreadParams(BaseModel):
    days: Optional[Union[str, int]] = None
    max: clamped(1, 100, 50) = 50


class MessageIdParams(BaseModel):
    id: str = Field(min_length=1)


class DeleteEmailParams(MessageIdParams):
    permanent: bool = False


class ReplyParams(BaseModel):
    message_id: str = Field(min_length=1)
    body: str = Field(min_length=1)


class MessageIdsParams(BaseModel):
    ids: List[str] = Field(min_length=1)


class BatchDeleteParams(MessageIdsParams):
    permanent: bool = False


class SearchParams(BaseModel):
    query: str = Field(min_length=1)
    max: clamped(1, 100, 10) = 10


class DeleteByQueryParams(BaseModel):
    query: str = Field(min_length=1)
    max: clamped(1, 100, 50) = 50
    permanent: bool = False
    dry_run: bool = False


class BulkDeleteParams(BaseModel):
    query: str = Field(min_length=1)
    # Clamped to 10..500 by the batch executor.
    batch_size: Optional[int] = 100
    permanent: bool = False
    dry_run: bool = False


class SnoozeParams(MessageIdParams):
    snooze_date: str = Field(min_length=1)


class ListSnoozedParams(BaseModel):
    max: clamped(1, 50, 20) = 20
