from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class DocumentStatus(str, Enum):
    UPLOADING = "uploading"
    CONVERTING = "converting"
    READY = "ready"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({DocumentStatus.READY, DocumentStatus.ERROR})

# Re-asserting the current status is always allowed and is a no-op.
ALLOWED_TRANSITIONS = {
    DocumentStatus.UPLOADING: frozenset({DocumentStatus.CONVERTING, DocumentStatus.ERROR}),
    DocumentStatus.CONVERTING: frozenset({DocumentStatus.READY, DocumentStatus.ERROR}),
    DocumentStatus.READY: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}

DEFAULT_BRAND_COLOR = "#1B4F8A"


class DocumentRecord(BaseModel):
    document_id: str
    user_id: str
    title: str = ""
    status: DocumentStatus = DocumentStatus.UPLOADING
    page_count: int = Field(0, ge=0)
    page_urls: List[str] = Field(default_factory=list)
    pdf_url: Optional[str] = None
    conversion_id: Optional[str] = None
    brand_color: str = DEFAULT_BRAND_COLOR
    logo_url: Optional[str] = None
    show_branding: bool = True
    published: bool = False
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _pages_match_status(self):
        if self.status == DocumentStatus.READY:
            if len(self.page_urls) != self.page_count:
                raise ValueError("page_urls must hold exactly page_count entries when ready")
        elif self.page_urls or self.page_count:
            raise ValueError("page_urls and page_count are only set once the document is ready")
        return self


# Fields the owner may change from the dashboard; conversion fields are never
# accepted from clients.
class DocumentSettingsUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    brand_color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    logo_url: Optional[str] = None
    show_branding: Optional[bool] = None
    published: Optional[bool] = None


class PublicDocument(BaseModel):
    document_id: str
    title: str
    page_count: int
    page_urls: List[str]
    brand_color: str
    logo_url: Optional[str] = None
    show_branding: bool
