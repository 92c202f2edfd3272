from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException, Security
from io import BytesIO
import logging
import uuid

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from models.document import DocumentRecord, DocumentSettingsUpdate, DocumentStatus
from models.notification import UploadNotification
from storage.object_store import ObjectStore, StorageError
from storage.status_store import DocumentNotFound, StatusStore
from tasks.celery_tasks import dispatch_upload_notification
from utils.config import get_settings
from utils.dependencies import get_object_store, get_status_store
from utils.jwt import get_current_user_id
from utils.paths import get_pdf_upload_path
from utils.response import api_response

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger("api.documents")

ALLOWED_MIMES = ["application/pdf", "application/x-pdf", "application/octet-stream"]


def validate_file_upload(file: UploadFile):
	ext = (file.filename or "").rsplit(".", 1)[-1].lower()
	if ext != "pdf":
		logger.warning("upload_unsupported_extension", extra={"file_name": file.filename, "ext": ext})
		raise HTTPException(status_code=400, detail="Unsupported file format")
	# Best-effort MIME check
	if file.content_type and file.content_type not in ALLOWED_MIMES:
		logger.warning("upload_unsupported_mime", extra={"file_name": file.filename, "mime": file.content_type})
		raise HTTPException(status_code=400, detail="Unsupported MIME type")
	return ext


def count_pdf_pages(content: bytes) -> int:
	try:
		return len(PdfReader(BytesIO(content)).pages)
	except (PdfReadError, ValueError, OSError) as exc:
		logger.warning("upload_unreadable_pdf", extra={"error": str(exc)})
		raise HTTPException(status_code=400, detail="File is not a readable PDF")


def get_owned_document(document_id: str, user_id: str, store: StatusStore) -> DocumentRecord:
	try:
		record = store.get(document_id)
	except DocumentNotFound:
		record = None
	# Documents of other users are reported as missing
	if record is None or record.user_id != user_id:
		raise HTTPException(status_code=404, detail="Document not found")
	return record


@router.post("/upload")
async def upload_document(
	file: UploadFile = File(...),
	title: str = Form(..., min_length=1, max_length=200),
	user_id: str = Security(get_current_user_id),
	store: StatusStore = Depends(get_status_store),
	objects: ObjectStore = Depends(get_object_store),
):
	settings = get_settings()
	validate_file_upload(file)

	# Read and size-check the content
	content = await file.read()
	size_bytes = len(content)
	size_mb = size_bytes / (1024 * 1024)
	if size_mb > settings.max_upload_mb:
		logger.warning("upload_too_large", extra={"file_name": file.filename, "size_mb": round(size_mb, 2)})
		raise HTTPException(status_code=400, detail=f"File too large. Max {settings.max_upload_mb}MB allowed")

	page_count = count_pdf_pages(content)
	if page_count > settings.max_page_count:
		logger.warning("upload_too_many_pages", extra={"file_name": file.filename, "page_count": page_count})
		raise HTTPException(
			status_code=400,
			detail=f"This PDF has more than {settings.max_page_count} pages. Please upload a smaller file.",
		)

	document_id = str(uuid.uuid4())
	record = store.create(DocumentRecord(document_id=document_id, user_id=user_id, title=title.strip()))

	storage_path = get_pdf_upload_path(user_id, document_id, settings.upload_prefix)
	metadata = {"documentId": document_id, "userId": user_id}
	try:
		objects.put(storage_path, content, "application/pdf", metadata=metadata)
	except StorageError:
		store.update(document_id, {"status": DocumentStatus.ERROR})
		raise

	logger.info(
		"upload_accepted",
		extra={
			"document_id": document_id,
			"user_id": user_id,
			"file_name": file.filename,
			"size_bytes": size_bytes,
			"page_count": page_count,
		},
	)

	# Stands in for the storage trigger of the upload bucket
	try:
		dispatch_upload_notification(
			UploadNotification(bucket=objects.bucket, name=storage_path, metadata=metadata, contentType="application/pdf")
		)
	except Exception as exc:
		# Broker unreachable: nothing will ever pick this upload up
		logger.error("conversion_dispatch_failed", extra={"document_id": document_id, "error": str(exc)})
		store.update(document_id, {"status": DocumentStatus.ERROR})
		raise HTTPException(status_code=503, detail="Conversion could not be scheduled. Please try again.")

	return api_response(
		data=store.get(document_id) or record,
		message="File uploaded successfully. Conversion triggered.",
		status_code=201,
	)


@router.get("/{document_id}")
def get_document(
	document_id: str,
	user_id: str = Security(get_current_user_id),
	store: StatusStore = Depends(get_status_store),
):
	record = get_owned_document(document_id, user_id, store)
	return api_response(data=record, message="Document fetched successfully.")


@router.patch("/{document_id}")
def update_document_settings(
	document_id: str,
	changes: DocumentSettingsUpdate,
	user_id: str = Security(get_current_user_id),
	store: StatusStore = Depends(get_status_store),
):
	get_owned_document(document_id, user_id, store)
	fields = {
		key: value
		for key, value in changes.model_dump(exclude_unset=True).items()
		if value is not None or key == "logo_url"
	}
	if not fields:
		raise HTTPException(status_code=400, detail="No settings to update")
	record = store.update(document_id, fields)
	logger.info("document_settings_updated", extra={"document_id": document_id, "fields": sorted(fields)})
	return api_response(data=record, message="Document updated successfully.")
