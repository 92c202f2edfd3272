from .celery_app import celery_app
import logging

from pydantic import ValidationError

from conversion.base import ConversionOutcome
from models.analytics import ViewerEvent
from models.document import DocumentStatus
from models.notification import UploadNotification
from utils.analytics import append_viewer_event
from utils.config import get_settings
from utils.dependencies import get_orchestrator, get_status_store
from utils.logging_config import document_id_ctx
from utils.paths import get_pdf_upload_path

logger = logging.getLogger("tasks.conversion")


@celery_app.task(name="tasks.convert_pdf")
def convert_pdf_task(notification: dict) -> str:
	try:
		parsed = UploadNotification.model_validate(notification)
	except ValidationError as exc:
		logger.warning("notification_malformed", extra={"error_count": exc.error_count()})
		return ConversionOutcome.IGNORED.value

	token = document_id_ctx.set(parsed.metadata.get("documentId"))
	try:
		logger.info("task_started", extra={"object_path": parsed.name})
		outcome = get_orchestrator().handle(parsed)
		logger.info("task_completed", extra={"object_path": parsed.name, "outcome": outcome.value})
		return outcome.value
	finally:
		document_id_ctx.reset(token)


def dispatch_upload_notification(notification: UploadNotification) -> None:
	"""Hand an upload notification to the conversion worker."""
	convert_pdf_task.delay(notification.model_dump(by_alias=True))


@celery_app.task(name="tasks.record_viewer_event", ignore_result=True)
def record_viewer_event_task(event: dict) -> None:
	try:
		parsed = ViewerEvent.model_validate(event)
		append_viewer_event(parsed, get_settings().analytics_dir)
	except Exception:
		# Best effort: a lost analytics event is acceptable
		logger.warning("viewer_event_not_recorded", exc_info=True)


@celery_app.task(name="tasks.reconcile_stale_conversions")
def reconcile_stale_conversions_task() -> int:
	"""Re-enqueue documents stuck in ``converting``; the stale claim lets one retry take over."""
	settings = get_settings()
	stale = get_status_store().find_stale(DocumentStatus.CONVERTING, settings.stale_conversion_seconds)
	for record in stale:
		notification = UploadNotification(
			bucket=settings.storage_bucket,
			name=get_pdf_upload_path(record.user_id, record.document_id, settings.upload_prefix),
			metadata={"documentId": record.document_id, "userId": record.user_id},
		)
		logger.warning("stale_conversion_requeued", extra={"document_id": record.document_id})
		dispatch_upload_notification(notification)
	return len(stale)
