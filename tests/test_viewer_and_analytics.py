from datetime import date, datetime, timezone

from fastapi.testclient import TestClient

from models.analytics import ViewerEvent, ViewerEventType
from models.document import DocumentRecord, DocumentStatus
from utils.analytics import ViewerSessionTracker, append_viewer_event, read_viewer_events
from utils.config import get_settings
from utils.dependencies import get_status_store

DOC = "doc-1"


def seed(published=True, ready=True):
	store = get_status_store()
	store.create(DocumentRecord(document_id=DOC, user_id="user-1", title="Lookbook", published=published))
	if ready:
		store.update(DOC, {"status": DocumentStatus.CONVERTING})
		store.update(DOC, {"status": DocumentStatus.READY, "page_count": 2, "page_urls": ["p1", "p2"]})


def test_view_published_document(app_client: TestClient):
	seed()
	resp = app_client.get(f"/view/{DOC}")
	assert resp.status_code == 200
	data = resp.json()["data"]
	assert data["page_urls"] == ["p1", "p2"]
	assert data["title"] == "Lookbook"
	assert data["brand_color"] == "#1B4F8A"
	# Owner and lifecycle fields stay private
	assert "user_id" not in data
	assert "published" not in data


def test_view_unpublished_document(app_client: TestClient):
	seed(published=False)
	assert app_client.get(f"/view/{DOC}").status_code == 403


def test_view_document_not_ready(app_client: TestClient):
	seed(ready=False)
	assert app_client.get(f"/view/{DOC}").status_code == 409


def test_view_unknown_document(app_client: TestClient):
	assert app_client.get("/view/nothing").status_code == 404
	assert app_client.get("/view/bad.id").status_code == 404


def test_analytics_event_is_recorded(app_client: TestClient):
	body = {"document_id": DOC, "event_type": "page_turned", "session_id": "s-1", "page_number": 4}
	resp = app_client.post("/analytics/events", json=body)
	assert resp.status_code == 202
	events = read_viewer_events(DOC, datetime.now(timezone.utc).date(), get_settings().analytics_dir)
	assert len(events) == 1
	assert events[0]["event_type"] == "page_turned"
	assert events[0]["page_number"] == 4


def test_analytics_event_validation(app_client: TestClient):
	body = {"document_id": DOC, "event_type": "page_turned", "session_id": "s-1", "page_number": 0}
	assert app_client.post("/analytics/events", json=body).status_code == 422


def test_append_and_read_events(tmp_path):
	when = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
	for page in (1, 2):
		append_viewer_event(
			ViewerEvent(document_id=DOC, event_type=ViewerEventType.PAGE_TURNED, session_id="s", page_number=page, timestamp=when),
			str(tmp_path),
		)
	events = read_viewer_events(DOC, date(2026, 3, 1), str(tmp_path))
	assert [e["page_number"] for e in events] == [1, 2]
	assert read_viewer_events(DOC, date(2026, 3, 2), str(tmp_path)) == []


def test_session_tracker_reports_highest_page():
	sent = []
	tracker = ViewerSessionTracker(DOC, owner_id="user-1", emit=sent.append)
	tracker.opened()
	tracker.page_turned(3)
	tracker.page_turned(7)
	tracker.page_turned(2)
	tracker.page_turned(0)
	tracker.ended()
	tracker.ended()
	tracker.page_turned(9)

	assert [e.event_type for e in sent] == [
		ViewerEventType.OPENED,
		ViewerEventType.PAGE_TURNED,
		ViewerEventType.PAGE_TURNED,
		ViewerEventType.PAGE_TURNED,
		ViewerEventType.SESSION_ENDED,
	]
	assert sent[-1].pages_reached == 7
	assert {e.session_id for e in sent} == {tracker.session_id}
	assert all(e.user_id == "user-1" for e in sent)


def test_session_tracker_swallows_emit_failures():
	def broken(_event):
		raise ConnectionError("analytics down")

	tracker = ViewerSessionTracker(DOC, emit=broken)
	tracker.opened()
	tracker.page_turned(2)
	tracker.ended()
	assert tracker.max_page_reached == 2
