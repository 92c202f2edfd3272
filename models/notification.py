from typing import Dict, Optional

from pydantic import BaseModel, Field


class UploadNotification(BaseModel):
    """Storage "object finalized" event, as delivered by the trigger."""

    bucket: str
    name: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    content_type: Optional[str] = Field(None, alias="contentType")
    generation: Optional[str] = None

    model_config = {"populate_by_name": True}


class ConvertRequest(BaseModel):
    """Body of ``POST /convert`` on the remote rendering service."""

    bucketName: str
    filePath: str
    documentId: str
    userId: str
    # Claim token of the calling attempt; status writes are made on its behalf
    conversionId: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_-]{1,64}$")
