from typing import Optional
from pydantic import BaseModel, Field


class StartOAuthParams(BaseModel):
    port: Optional[int] = Field(default=None, ge=1, le=65535)
