from fastapi import APIRouter, Depends
import logging

from models.notification import UploadNotification
from tasks.celery_tasks import dispatch_upload_notification
from utils.config import get_settings
from utils.jwt import require_service_token
from utils.response import api_response

router = APIRouter(prefix="/uploads", tags=["uploads"])
logger = logging.getLogger("api.uploads")


@router.post("/events")
def upload_finalized(notification: UploadNotification, _service: dict = Depends(require_service_token)):
	"""Storage trigger webhook: one call per finalized object in the bucket."""
	if not notification.name.startswith(get_settings().upload_prefix):
		logger.debug("upload_event_ignored", extra={"object_path": notification.name})
		return api_response(data={"queued": False}, message="Ignored: not an upload", status_code=200)

	dispatch_upload_notification(notification)
	logger.info("upload_event_queued", extra={"object_path": notification.name, "generation": notification.generation})
	return api_response(data={"queued": True}, message="Conversion queued", status_code=202)
