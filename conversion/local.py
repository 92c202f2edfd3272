"""In-process conversion: rasterize, encode and upload every page."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from storage.object_store import ObjectStore, StorageError
from storage.status_store import StatusStore
from utils.paths import get_page_image_path

from .base import ConversionResult, SourceRef
from .encoder import DEFAULT_JPEG_QUALITY, encode
from .errors import EncodeError, PageLimitError, RenderError
from .rasterizer import DEFAULT_SCALE, open_pdf, rasterize_page

logger = logging.getLogger("conversion.local")

PAGE_CACHE_CONTROL = "public, max-age=31536000"


class LocalConversionEngine:
    name = "local"

    def __init__(
        self,
        object_store: ObjectStore,
        *,
        scale: float = DEFAULT_SCALE,
        quality: int = DEFAULT_JPEG_QUALITY,
        max_pages: Optional[int] = 100,
        max_workers: int = 1,
        rasterizer: Callable = rasterize_page,
        encoder: Callable = encode,
        status_store: Optional[StatusStore] = None,
    ) -> None:
        self.object_store = object_store
        # Used to check the claim before cleaning up after a failed attempt.
        self.status_store = status_store
        self.scale = scale
        self.quality = quality
        self.max_pages = max_pages
        self.max_workers = max(1, max_workers)
        self._rasterize = rasterizer
        self._encode = encoder
        # PyMuPDF must not render from several threads at once.
        self._render_lock = threading.Lock()

    def convert(self, document_id: str, user_id: str, source: SourceRef) -> ConversionResult:
        started = time.monotonic()
        pdf_bytes = self.object_store.get(source.object_path)
        doc = open_pdf(pdf_bytes)
        try:
            return self._convert_document(doc, document_id, user_id, source, started)
        finally:
            doc.close()

    def _convert_document(self, doc, document_id: str, user_id: str, source: SourceRef, started: float) -> ConversionResult:
        page_count = doc.page_count
        if page_count == 0:
            raise RenderError("PDF has no pages")
        if self.max_pages and page_count > self.max_pages:
            raise PageLimitError(page_count, self.max_pages)

        logger.info(
            "conversion_started",
            extra={"document_id": document_id, "page_count": page_count, "workers": self.max_workers},
        )
        written: List[str] = []
        written_lock = threading.Lock()

        def convert_page(page_index: int) -> str:
            with self._render_lock:
                image = self._rasterize(doc, page_index, self.scale)
            try:
                data = self._encode(image, self.quality)
            except EncodeError as exc:
                exc.page_index = page_index
                raise
            finally:
                image.close()
            path = get_page_image_path(user_id, document_id, page_index + 1)
            self.object_store.put(path, data, "image/jpeg", cache_control=PAGE_CACHE_CONTROL)
            with written_lock:
                written.append(path)
            url = self.object_store.make_public(path)
            logger.debug(
                "page_converted",
                extra={"document_id": document_id, "page": page_index + 1, "size_bytes": len(data)},
            )
            return url

        try:
            if self.max_workers == 1:
                page_urls = [convert_page(i) for i in range(page_count)]
            else:
                page_urls = self._convert_concurrently(convert_page, page_count)
        except Exception:
            self._discard(source, written)
            raise

        logger.info(
            "conversion_rendered",
            extra={
                "document_id": document_id,
                "page_count": page_count,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return ConversionResult(page_urls=page_urls)

    def _convert_concurrently(self, convert_page: Callable[[int], str], page_count: int) -> List[str]:
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="page") as pool:
            futures = [pool.submit(convert_page, i) for i in range(page_count)]
            page_urls = []
            # Walk in page order so the first failing page decides the error.
            for future in futures:
                try:
                    page_urls.append(future.result())
                except BaseException:
                    for pending in futures:
                        pending.cancel()
                    raise
        return page_urls

    def _discard(self, source: SourceRef, paths: List[str]) -> None:
        document_id = source.document_id
        if self.status_store is not None and source.conversion_id is not None:
            if not self.status_store.owns_conversion(document_id, source.conversion_id):
                # The pages now belong to the attempt that took over.
                logger.warning(
                    "page_cleanup_skipped",
                    extra={"document_id": document_id, "conversion_id": source.conversion_id},
                )
                return
        for path in paths:
            try:
                self.object_store.delete(path)
            except StorageError as exc:
                logger.warning(
                    "page_cleanup_failed",
                    extra={"document_id": document_id, "object_path": path, "error": str(exc)},
                )
