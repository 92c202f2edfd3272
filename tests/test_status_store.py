import threading

import pytest

from models.document import DocumentRecord, DocumentStatus
from storage.status_store import (
	ConversionClaimLost,
	DocumentExistsError,
	DocumentNotFound,
	FileStatusStore,
	InMemoryStatusStore,
	StatusTransitionError,
)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path, clock):
	if request.param == "memory":
		return InMemoryStatusStore(clock=clock)
	return FileStatusStore(str(tmp_path / "status"), clock=clock)


def new_record(document_id="doc-1", user_id="user-1"):
	return DocumentRecord(document_id=document_id, user_id=user_id, title="Brochure")


def test_create_and_get(store, clock):
	created = store.create(new_record())
	assert created.status == DocumentStatus.UPLOADING
	assert created.created_at == clock.now
	fetched = store.get("doc-1")
	assert fetched == created
	assert store.get("missing") is None


def test_create_twice_fails(store):
	store.create(new_record())
	with pytest.raises(DocumentExistsError):
		store.create(new_record())


def test_update_missing_document(store):
	with pytest.raises(DocumentNotFound):
		store.update("missing", {"title": "x"})


def test_update_rejects_unknown_and_immutable_fields(store):
	store.create(new_record())
	with pytest.raises(ValueError):
		store.update("doc-1", {"nope": 1})
	with pytest.raises(ValueError):
		store.update("doc-1", {"user_id": "someone-else"})


def test_lifecycle_to_ready(store):
	store.create(new_record())
	store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	urls = ["u1", "u2"]
	record = store.update("doc-1", {"status": DocumentStatus.READY, "page_count": 2, "page_urls": urls})
	assert record.status == DocumentStatus.READY
	assert record.page_urls == urls
	assert store.get("doc-1").page_count == 2


def test_ready_requires_matching_pages(store):
	store.create(new_record())
	store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	with pytest.raises(ValueError):
		store.update("doc-1", {"status": DocumentStatus.READY, "page_count": 3, "page_urls": ["only-one"]})
	with pytest.raises(ValueError):
		store.update("doc-1", {"page_count": 2, "page_urls": ["a", "b"]})
	assert store.get("doc-1").status == DocumentStatus.CONVERTING


@pytest.mark.parametrize("terminal", [DocumentStatus.READY, DocumentStatus.ERROR])
def test_terminal_states_are_final(store, terminal):
	store.create(new_record())
	store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	if terminal == DocumentStatus.READY:
		store.update("doc-1", {"status": terminal, "page_count": 1, "page_urls": ["u"]})
	else:
		store.update("doc-1", {"status": terminal})
	for target in (DocumentStatus.UPLOADING, DocumentStatus.CONVERTING):
		with pytest.raises(StatusTransitionError):
			store.update("doc-1", {"status": target})
	other = DocumentStatus.ERROR if terminal == DocumentStatus.READY else DocumentStatus.READY
	with pytest.raises(StatusTransitionError):
		store.update("doc-1", {"status": other, "page_count": 1, "page_urls": ["u"]})


def test_repeated_error_is_a_noop(store):
	store.create(new_record())
	store.update("doc-1", {"status": DocumentStatus.ERROR})
	seen = []
	store.subscribe("doc-1", seen.append)
	store.update("doc-1", {"status": DocumentStatus.ERROR})
	# Only the initial delivery, no change broadcast
	assert [r.status for r in seen] == [DocumentStatus.ERROR]


def test_settings_update_keeps_timestamp(store, clock):
	created = store.create(new_record())
	clock.advance(10)
	record = store.update("doc-1", {"published": True, "brand_color": "#000000"})
	assert record.published is True
	assert record.updated_at == created.updated_at


def test_status_change_bumps_timestamp_monotonically(store, clock):
	created = store.create(new_record())
	# Clock does not move; the timestamp still has to increase
	record = store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	assert record.updated_at > created.updated_at


def test_subscribe_delivers_changes_in_order(store):
	store.create(new_record())
	seen = []
	unsubscribe = store.subscribe("doc-1", lambda r: seen.append(r.status))
	store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	store.update("doc-1", {"status": DocumentStatus.ERROR})
	unsubscribe()
	store.update("doc-1", {"title": "Renamed"})
	assert seen == [DocumentStatus.UPLOADING, DocumentStatus.CONVERTING, DocumentStatus.ERROR]


def test_failing_subscriber_does_not_break_updates(store):
	store.create(new_record())

	def broken(_record):
		raise RuntimeError("boom")

	store.subscribe("doc-1", broken)
	record = store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	assert record.status == DocumentStatus.CONVERTING


def test_claim_conversion(store, clock):
	store.create(new_record())
	assert store.claim_conversion("doc-1", "first", stale_after=60) is True
	record = store.get("doc-1")
	assert record.status == DocumentStatus.CONVERTING
	assert record.conversion_id == "first"
	# Same attempt may re-claim, another one may not
	assert store.claim_conversion("doc-1", "first", stale_after=60) is True
	assert store.claim_conversion("doc-1", "second", stale_after=60) is False
	clock.advance(61)
	assert store.claim_conversion("doc-1", "second", stale_after=60) is True
	assert store.get("doc-1").conversion_id == "second"


def test_claim_refused_on_terminal_record(store):
	store.create(new_record())
	store.update("doc-1", {"status": DocumentStatus.ERROR})
	assert store.claim_conversion("doc-1", "late", stale_after=0) is False


def test_claim_missing_document(store):
	with pytest.raises(DocumentNotFound):
		store.claim_conversion("missing", "x", stale_after=60)


def test_find_stale(store, clock):
	store.create(new_record("doc-1"))
	store.create(new_record("doc-2"))
	store.claim_conversion("doc-1", "a", stale_after=60)
	clock.advance(120)
	store.claim_conversion("doc-2", "b", stale_after=60)
	stale = store.find_stale(DocumentStatus.CONVERTING, 60)
	assert [r.document_id for r in stale] == ["doc-1"]


def test_concurrent_claims_have_one_winner(store):
	store.create(new_record())
	results = []
	barrier = threading.Barrier(8)

	def claim(i):
		barrier.wait()
		results.append(store.claim_conversion("doc-1", f"attempt-{i}", stale_after=60))

	threads = [threading.Thread(target=claim, args=(i,)) for i in range(8)]
	for t in threads:
		t.start()
	for t in threads:
		t.join()
	assert results.count(True) == 1


def test_file_store_rejects_unsafe_ids(tmp_path):
	store = FileStatusStore(str(tmp_path / "status"))
	with pytest.raises(DocumentNotFound):
		store.get("../etc/passwd")


def test_file_store_survives_reopen(tmp_path):
	root = str(tmp_path / "status")
	FileStatusStore(root).create(new_record())
	assert FileStatusStore(root).get("doc-1").title == "Brochure"


def test_converting_twice_is_idempotent(store, clock):
	store.create(new_record())
	seen = []
	store.subscribe("doc-1", seen.append)
	first = store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	clock.advance(30)
	second = store.update("doc-1", {"status": DocumentStatus.CONVERTING})
	assert second == first
	assert second.updated_at == first.updated_at
	assert store.get("doc-1") == first
	# Initial delivery plus a single change
	assert [r.status for r in seen] == [DocumentStatus.UPLOADING, DocumentStatus.CONVERTING]


def test_update_for_conversion_requires_claim(store, clock):
	store.create(new_record())
	store.claim_conversion("doc-1", "old", stale_after=60)
	assert store.owns_conversion("doc-1", "old")
	clock.advance(61)
	store.claim_conversion("doc-1", "new", stale_after=60)
	assert not store.owns_conversion("doc-1", "old")

	with pytest.raises(ConversionClaimLost) as exc:
		store.update("doc-1", {"status": DocumentStatus.ERROR}, conversion_id="old")
	assert exc.value.owner == "new"
	assert store.get("doc-1").status == DocumentStatus.CONVERTING

	record = store.update(
		"doc-1",
		{"status": DocumentStatus.READY, "page_count": 1, "page_urls": ["u"]},
		conversion_id="new",
	)
	assert record.status == DocumentStatus.READY
