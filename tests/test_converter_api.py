from fastapi.testclient import TestClient

from conftest import auth_headers, make_pdf, service_headers
from models.document import DocumentRecord, DocumentStatus
from utils.dependencies import get_object_store, get_status_store
from utils.paths import get_pdf_upload_path

USER = "user-1"
DOC = "doc-1"


def seed(pdf: bytes = None, status: DocumentStatus = None):
	store = get_status_store()
	store.create(DocumentRecord(document_id=DOC, user_id=USER))
	if status is not None:
		store.update(DOC, {"status": status})
	path = get_pdf_upload_path(USER, DOC)
	get_object_store().put(path, pdf or make_pdf(2), "application/pdf", metadata={"documentId": DOC, "userId": USER})
	return path


def convert_body(path=None, document_id=DOC, user_id=USER):
	return {
		"bucketName": "local",
		"filePath": path or get_pdf_upload_path(user_id, document_id),
		"documentId": document_id,
		"userId": user_id,
	}


def test_convert_requires_service_token(app_client: TestClient):
	seed()
	assert app_client.post("/convert", json=convert_body()).status_code == 401
	# A dashboard user token is not accepted
	resp = app_client.post("/convert", json=convert_body(), headers=auth_headers(USER))
	assert resp.status_code == 401
	assert get_status_store().get(DOC).status == DocumentStatus.UPLOADING


def test_convert_renders_and_writes_status(app_client: TestClient):
	path = seed(make_pdf(2))
	resp = app_client.post("/convert", json=convert_body(), headers=service_headers())
	assert resp.status_code == 200, resp.text
	assert resp.json()["data"]["outcome"] == "ready"
	record = get_status_store().get(DOC)
	assert record.status == DocumentStatus.READY
	assert record.page_count == 2
	assert not get_object_store().exists(path)


def test_convert_failure_writes_error(app_client: TestClient):
	seed(b"%PDF-1.7 truncated")
	resp = app_client.post("/convert", json=convert_body(), headers=service_headers())
	assert resp.status_code == 500
	assert get_status_store().get(DOC).status == DocumentStatus.ERROR


def test_convert_rejects_mismatched_path(app_client: TestClient):
	seed()
	resp = app_client.post("/convert", json=convert_body(path=f"uploads/{USER}/other.pdf"), headers=service_headers())
	assert resp.status_code == 400
	assert get_status_store().get(DOC).status == DocumentStatus.UPLOADING


def test_convert_unknown_document(app_client: TestClient):
	resp = app_client.post("/convert", json=convert_body(document_id="ghost"), headers=service_headers())
	assert resp.status_code == 404


def test_convert_finalized_document(app_client: TestClient):
	seed(status=DocumentStatus.ERROR)
	resp = app_client.post("/convert", json=convert_body(), headers=service_headers())
	assert resp.status_code == 409
	assert get_status_store().get(DOC).status == DocumentStatus.ERROR


def test_upload_event_is_queued_and_converted(app_client: TestClient):
	path = seed(make_pdf(1))
	body = {"bucket": "local", "name": path, "metadata": {"documentId": DOC, "userId": USER}, "contentType": "application/pdf"}
	resp = app_client.post("/uploads/events", json=body, headers=service_headers())
	assert resp.status_code == 202
	assert resp.json()["data"] == {"queued": True}
	assert get_status_store().get(DOC).status == DocumentStatus.READY


def test_upload_event_outside_uploads(app_client: TestClient):
	seed()
	body = {"bucket": "local", "name": f"documents/{USER}/{DOC}/pages/page_001.jpg", "metadata": {}}
	resp = app_client.post("/uploads/events", json=body, headers=service_headers())
	assert resp.status_code == 200
	assert resp.json()["data"] == {"queued": False}
	assert get_status_store().get(DOC).status == DocumentStatus.UPLOADING


def test_upload_event_requires_service_token(app_client: TestClient):
	body = {"bucket": "local", "name": get_pdf_upload_path(USER, DOC), "metadata": {}}
	assert app_client.post("/uploads/events", json=body).status_code == 401


def test_convert_on_behalf_of_claiming_attempt(app_client: TestClient):
	seed(make_pdf(1))
	get_status_store().claim_conversion(DOC, "caller-1", stale_after=900)
	body = dict(convert_body(), conversionId="caller-1")
	resp = app_client.post("/convert", json=body, headers=service_headers())
	assert resp.status_code == 200
	assert get_status_store().get(DOC).status == DocumentStatus.READY


def test_convert_for_superseded_attempt(app_client: TestClient):
	seed(make_pdf(1))
	get_status_store().claim_conversion(DOC, "current", stale_after=900)
	body = dict(convert_body(), conversionId="superseded")
	resp = app_client.post("/convert", json=body, headers=service_headers())
	assert resp.status_code == 409
	record = get_status_store().get(DOC)
	assert record.status == DocumentStatus.CONVERTING
	assert record.conversion_id == "current"
