from pydantic import BaseModel
from typing import Any, Optional


class APIResponse(BaseModel):
    """Envelope of every JSON answer of the API."""

    data: Optional[Any] = None
    message: str
    status_code: int
