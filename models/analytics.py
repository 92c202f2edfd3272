from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ViewerEventType(str, Enum):
    OPENED = "opened"
    PAGE_TURNED = "page_turned"
    SESSION_ENDED = "session_ended"


class ViewerEvent(BaseModel):
    document_id: str = Field(..., pattern=r"^[A-Za-z0-9_-]{1,128}$")
    event_type: ViewerEventType
    session_id: str = Field(..., min_length=1, max_length=64)
    user_id: Optional[str] = None  # document owner, not the anonymous viewer
    page_number: Optional[int] = Field(None, ge=1)
    pages_reached: Optional[int] = Field(None, ge=1)
    timestamp: Optional[datetime] = None
