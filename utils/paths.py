import re

UPLOAD_PREFIX = "uploads/"

# Page file names carry three digits.
MAX_PAGE_NUMBER = 999

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def is_safe_id(value) -> bool:
    return isinstance(value, str) and bool(_SAFE_ID.match(value))


def get_pdf_upload_path(user_id: str, document_id: str, prefix: str = UPLOAD_PREFIX) -> str:
    """Object path of a freshly uploaded source PDF."""
    return f"{prefix.rstrip('/')}/{user_id}/{document_id}.pdf"


def get_document_prefix(user_id: str, document_id: str) -> str:
    return f"documents/{user_id}/{document_id}/pages/"


def get_page_image_path(user_id: str, document_id: str, page_number: int) -> str:
    # Zero-padded so that a lexicographic listing is already in page order.
    if not 1 <= page_number <= MAX_PAGE_NUMBER:
        raise ValueError(f"Page number {page_number} outside 1..{MAX_PAGE_NUMBER}")
    return f"{get_document_prefix(user_id, document_id)}page_{page_number:03d}.jpg"
