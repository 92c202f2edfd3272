"""Entry point of the conversion pipeline.

One ``handle`` call consumes one upload notification and drives the document
record to exactly one terminal state, whichever strategy is deployed.
"""

import logging
import uuid
from dataclasses import replace
from typing import Optional

from models.document import DocumentStatus
from models.notification import UploadNotification
from storage.object_store import ObjectStore, StorageError
from storage.status_store import ConversionClaimLost, DocumentNotFound, StatusStore, StatusTransitionError
from utils.paths import UPLOAD_PREFIX, get_pdf_upload_path, is_safe_id

from .base import ConversionOutcome, ConversionResult, ConversionStrategy, SourceRef
from .errors import ConversionError, InvalidNotification

logger = logging.getLogger("conversion.orchestrator")


def validate_notification(notification: UploadNotification, upload_prefix: str = UPLOAD_PREFIX) -> SourceRef:
    """Return the source reference of an upload we own, else raise ``InvalidNotification``."""
    path = notification.name or ""
    if not path.startswith(upload_prefix):
        raise InvalidNotification(f"{path!r} is outside {upload_prefix!r}")
    document_id = notification.metadata.get("documentId")
    user_id = notification.metadata.get("userId")
    if not document_id or not user_id:
        raise InvalidNotification(f"{path!r} lacks documentId/userId metadata")
    if not is_safe_id(document_id) or not is_safe_id(user_id):
        raise InvalidNotification(f"{path!r} carries malformed identifiers")
    if path != get_pdf_upload_path(user_id, document_id, upload_prefix):
        raise InvalidNotification(f"{path!r} does not match its metadata")
    return SourceRef(bucket=notification.bucket, object_path=path, document_id=document_id, user_id=user_id)


class ConversionOrchestrator:
    def __init__(
        self,
        strategy: ConversionStrategy,
        status_store: StatusStore,
        object_store: ObjectStore,
        *,
        upload_prefix: str = UPLOAD_PREFIX,
        retain_source: bool = False,
        stale_after: float = 900.0,
    ) -> None:
        self.strategy = strategy
        self.status_store = status_store
        self.object_store = object_store
        self.upload_prefix = upload_prefix
        self.retain_source = retain_source
        self.stale_after = stale_after

    def handle(self, notification: UploadNotification) -> ConversionOutcome:
        try:
            ref = validate_notification(notification, self.upload_prefix)
        except InvalidNotification as exc:
            logger.info("notification_ignored", extra={"object_path": notification.name, "reason": exc.message})
            return ConversionOutcome.IGNORED

        conversion_id = uuid.uuid4().hex
        try:
            claimed = self.status_store.claim_conversion(
                ref.document_id, conversion_id, stale_after=self.stale_after
            )
        except DocumentNotFound:
            logger.error("document_record_missing", extra={"document_id": ref.document_id, "object_path": ref.object_path})
            return ConversionOutcome.MISSING
        if not claimed:
            logger.info("conversion_already_claimed", extra={"document_id": ref.document_id})
            return ConversionOutcome.SKIPPED
        return self.run(ref, conversion_id=conversion_id)

    def run(self, ref: SourceRef, conversion_id: Optional[str] = None) -> ConversionOutcome:
        """Convert a claimed document and record the terminal state.

        With ``conversion_id`` every status write is conditional on that
        attempt still holding the claim; an attempt that was taken over
        stops writing and returns ``SKIPPED``.
        """
        if conversion_id is not None:
            ref = replace(ref, conversion_id=conversion_id)
        extra = {"document_id": ref.document_id, "strategy": self.strategy.name, "conversion_id": ref.conversion_id}
        try:
            # No-op when the record is already converting.
            self.status_store.update(
                ref.document_id, {"status": DocumentStatus.CONVERTING}, conversion_id=ref.conversion_id
            )
        except ConversionClaimLost as exc:
            logger.warning("conversion_claim_lost", extra={**extra, "owner": exc.owner})
            return ConversionOutcome.SKIPPED
        except (DocumentNotFound, StatusTransitionError) as exc:
            logger.error("conversion_not_startable", extra={**extra, "error": str(exc)})
            return ConversionOutcome.MISSING if isinstance(exc, DocumentNotFound) else ConversionOutcome.SKIPPED

        logger.info("conversion_dispatched", extra=extra)
        try:
            result = self.strategy.convert(ref.document_id, ref.user_id, ref)
        except ConversionError as exc:
            logger.error(
                "conversion_failed",
                extra={**extra, "error_type": type(exc).__name__, "error": exc.message,
                       "page": getattr(exc, "page_index", None)},
            )
            return self._mark_error(ref)
        except Exception:
            logger.error("conversion_crashed", exc_info=True, extra=extra)
            return self._mark_error(ref)

        if result.delegated:
            logger.info("conversion_delegated", extra=extra)
            return ConversionOutcome.DELEGATED
        return self._mark_ready(ref, result, extra)

    def _mark_ready(self, ref: SourceRef, result: ConversionResult, extra: dict) -> ConversionOutcome:
        fields = {
            "status": DocumentStatus.READY,
            "page_count": result.page_count,
            "page_urls": list(result.page_urls),
        }
        if self.retain_source:
            try:
                fields["pdf_url"] = self.object_store.make_public(ref.object_path)
            except StorageError as exc:
                logger.error("source_publish_failed", extra={**extra, "error": exc.message})
                return self._mark_error(ref)
        try:
            self.status_store.update(ref.document_id, fields, conversion_id=ref.conversion_id)
        except ConversionClaimLost as exc:
            logger.warning("conversion_claim_lost", extra={**extra, "owner": exc.owner})
            return ConversionOutcome.SKIPPED
        except StatusTransitionError as exc:
            logger.warning("ready_write_refused", extra={**extra, "error": str(exc)})
            return ConversionOutcome.SKIPPED
        logger.info("conversion_ready", extra={**extra, "page_count": result.page_count})

        if not self.retain_source:
            try:
                self.object_store.delete(ref.object_path)
            except StorageError as exc:
                logger.warning("source_cleanup_failed", extra={**extra, "error": exc.message})
        return ConversionOutcome.READY

    def _mark_error(self, ref: SourceRef) -> ConversionOutcome:
        try:
            self.status_store.update(ref.document_id, {"status": DocumentStatus.ERROR}, conversion_id=ref.conversion_id)
        except ConversionClaimLost as exc:
            # A newer attempt owns the document; its result stands.
            logger.warning("error_write_skipped", extra={"document_id": ref.document_id, "owner": exc.owner})
            return ConversionOutcome.SKIPPED
        except StatusTransitionError as exc:
            # Someone else (e.g. the remote service) already reached a terminal state.
            logger.warning("error_write_refused", extra={"document_id": ref.document_id, "error": str(exc)})
        except DocumentNotFound:
            logger.error("document_record_missing", extra={"document_id": ref.document_id})
        return ConversionOutcome.ERROR
