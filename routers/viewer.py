from fastapi import APIRouter, Depends, HTTPException
import logging

from models.analytics import ViewerEvent
from models.document import DocumentStatus, PublicDocument
from storage.status_store import DocumentNotFound, StatusStore
from utils.analytics import send_viewer_event
from utils.dependencies import get_status_store
from utils.response import api_response

router = APIRouter(tags=["viewer"])
logger = logging.getLogger("api.viewer")


@router.get("/view/{document_id}")
def view_document(document_id: str, store: StatusStore = Depends(get_status_store)):
	"""Public, unauthenticated read of a published document."""
	try:
		record = store.get(document_id)
	except DocumentNotFound:
		record = None
	if record is None:
		raise HTTPException(status_code=404, detail="Document not found.")
	if not record.published:
		raise HTTPException(status_code=403, detail="Document is not published yet.")
	if record.status != DocumentStatus.READY:
		raise HTTPException(status_code=409, detail="Document unavailable.")
	data = PublicDocument(**record.model_dump(include=set(PublicDocument.model_fields)))
	return api_response(data=data, message="Document fetched successfully.")


@router.post("/analytics/events")
def log_viewer_event(event: ViewerEvent):
	# Always accepted; delivery is best effort
	send_viewer_event(event)
	return api_response(data=None, message="Event accepted", status_code=202)
