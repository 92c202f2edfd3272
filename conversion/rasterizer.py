"""PDF page rasterization backed by PyMuPDF."""

import fitz  # PyMuPDF
from PIL import Image

from .errors import RenderError

DEFAULT_SCALE = 1.5


def open_pdf(pdf_bytes: bytes) -> fitz.Document:
    """Parse a PDF once; the caller closes the returned document."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise RenderError(f"Cannot open PDF: {exc}") from exc
    if doc.needs_pass:
        doc.close()
        raise RenderError("PDF is encrypted")
    return doc


def count_pages(pdf_bytes: bytes) -> int:
    doc = open_pdf(pdf_bytes)
    try:
        return doc.page_count
    finally:
        doc.close()


def rasterize_page(doc: fitz.Document, page_index: int, scale: float = DEFAULT_SCALE) -> Image.Image:
    """Render one zero-based page of an open document to an RGB image at ``scale`` times 72 dpi."""
    if scale <= 0:
        raise RenderError(f"Invalid scale {scale}", page_index=page_index)
    if not 0 <= page_index < doc.page_count:
        raise RenderError(f"Page index {page_index} outside 0..{doc.page_count - 1}", page_index=page_index)
    try:
        page = doc.load_page(page_index)
        pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
    except MemoryError as exc:
        raise RenderError(f"Out of memory rendering page {page_index}", page_index=page_index) from exc
    except Exception as exc:
        raise RenderError(f"Failed to render page {page_index}: {exc}", page_index=page_index) from exc


def rasterize(pdf_bytes: bytes, page_index: int, scale: float = DEFAULT_SCALE) -> Image.Image:
    doc = open_pdf(pdf_bytes)
    try:
        return rasterize_page(doc, page_index, scale)
    finally:
        doc.close()
