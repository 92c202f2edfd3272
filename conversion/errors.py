"""Error taxonomy for the conversion pipeline.

Every error here is terminal for the current conversion attempt. The
orchestrator collapses them into the document's ``error`` status and logs the
details; none of them is shown to the end user.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for conversion failures."""

    default_message = "Document conversion failed."

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidNotification(ConversionError):
    """The upload notification is foreign or malformed; treated as a no-op."""

    default_message = "Notification does not describe an upload we own."


class RenderError(ConversionError):
    default_message = "PDF page could not be rasterized."

    def __init__(self, message: str = "", page_index: Optional[int] = None) -> None:
        self.page_index = page_index
        super().__init__(message)


class PageLimitError(RenderError):
    default_message = "PDF has more pages than allowed."

    def __init__(self, page_count: int, limit: int) -> None:
        self.page_count = page_count
        self.limit = limit
        super().__init__(f"PDF has {page_count} pages, limit is {limit}")


class EncodeError(ConversionError):
    default_message = "Page image could not be encoded."

    def __init__(self, message: str = "", page_index: Optional[int] = None) -> None:
        self.page_index = page_index
        super().__init__(message)


class AuthError(ConversionError):
    default_message = "Could not authenticate against the rendering service."


class TransportError(ConversionError):
    default_message = "Rendering service request failed."


class RemoteTimeoutError(TransportError, TimeoutError):
    default_message = "Rendering service did not answer in time."
