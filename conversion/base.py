from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol


@dataclass(frozen=True)
class SourceRef:
    bucket: str
    object_path: str
    document_id: str
    user_id: str
    # Claim token of the attempt working on this source, if any.
    conversion_id: Optional[str] = None


@dataclass
class ConversionResult:
    page_urls: List[str] = field(default_factory=list)
    # True when the remote service owns writing the terminal status.
    delegated: bool = False

    @property
    def page_count(self) -> int:
        return len(self.page_urls)


class ConversionOutcome(str, Enum):
    READY = "ready"
    ERROR = "error"
    DELEGATED = "delegated"
    IGNORED = "ignored"
    SKIPPED = "skipped"
    MISSING = "missing"


class ConversionStrategy(Protocol):
    name: str

    def convert(self, document_id: str, user_id: str, source: SourceRef) -> ConversionResult:
        ...
