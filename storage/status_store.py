"""Per-document status records.

Records are only ever changed through partial field updates. Every
read-modify-write runs inside a per-document critical section, and status
changes are checked against ``ALLOWED_TRANSITIONS`` so that a record never
leaves ``ready``/``error`` and concurrent writers of the same terminal value
converge on one record.
"""

import fcntl
import logging
import math
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from models.document import ALLOWED_TRANSITIONS, DocumentRecord, DocumentStatus
from storage.object_store import atomic_write
from utils.paths import is_safe_id

logger = logging.getLogger("storage.status")

Subscriber = Callable[[DocumentRecord], None]

IMMUTABLE_FIELDS = frozenset({"document_id", "user_id", "created_at", "updated_at"})
UPDATABLE_FIELDS = frozenset(DocumentRecord.model_fields) - IMMUTABLE_FIELDS


class StatusStoreError(Exception):
    pass


class DocumentNotFound(StatusStoreError):
    pass


class DocumentExistsError(StatusStoreError):
    pass


class StatusTransitionError(StatusStoreError):
    def __init__(self, document_id: str, current: DocumentStatus, target: DocumentStatus) -> None:
        self.document_id = document_id
        self.current = current
        self.target = target
        super().__init__(f"Document {document_id}: cannot move from {current.value} to {target.value}")


class ConversionClaimLost(StatusStoreError):
    def __init__(self, document_id: str, conversion_id: str, owner: Optional[str]) -> None:
        self.document_id = document_id
        self.conversion_id = conversion_id
        self.owner = owner
        super().__init__(f"Document {document_id}: conversion {conversion_id} no longer owns the record (owner {owner})")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusStore(ABC):
    """Shared update semantics; subclasses only provide locking and persistence.

    Subscribers are called while the document's critical section is held, in
    commit order. They must not write to the store.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._subscribers_lock = threading.Lock()

    @abstractmethod
    def _locked(self, document_id: str):
        ...

    @abstractmethod
    def _load(self, document_id: str) -> Optional[DocumentRecord]:
        ...

    @abstractmethod
    def _save(self, record: DocumentRecord) -> None:
        ...

    @abstractmethod
    def _document_ids(self) -> Iterable[str]:
        ...

    def get(self, document_id: str) -> Optional[DocumentRecord]:
        return self._load(document_id)

    def create(self, record: DocumentRecord) -> DocumentRecord:
        with self._locked(record.document_id):
            if self._load(record.document_id) is not None:
                raise DocumentExistsError(f"Document {record.document_id} already exists")
            now = self._clock()
            record = record.model_copy(update={"created_at": record.created_at or now, "updated_at": now})
            self._save(record)
            self._notify(record)
        return record

    def update(self, document_id: str, fields: dict, *, conversion_id: Optional[str] = None) -> DocumentRecord:
        """Merge ``fields`` into the record and return the resulting record.

        With ``conversion_id`` the write only happens while that attempt
        still holds the claim; otherwise ``ConversionClaimLost`` is raised.

        Raises ``DocumentNotFound``, ``StatusTransitionError`` for a forbidden
        status change, ``ValueError`` for unknown fields or a result that
        breaks the page invariant. An update that changes nothing is not
        written and not broadcast.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        with self._locked(document_id):
            current = self._require(document_id)
            if conversion_id is not None and current.conversion_id != conversion_id:
                raise ConversionClaimLost(document_id, conversion_id, current.conversion_id)
            updated = self._merge(current, fields)
            if updated is None:
                return current
            self._save(updated)
            self._notify(updated)
            return updated

    def claim_conversion(self, document_id: str, conversion_id: str, *, stale_after: float) -> bool:
        """Move the record to ``converting`` on behalf of one attempt.

        Succeeds from ``uploading``, again for the attempt that already holds
        the claim, or over a ``converting`` record whose last transition is at
        least ``stale_after`` seconds old. Returns False otherwise.
        """
        with self._locked(document_id):
            current = self._require(document_id)
            if current.status == DocumentStatus.CONVERTING:
                if current.conversion_id == conversion_id:
                    return True
                if self._age(current) < stale_after:
                    return False
                logger.warning(
                    "stale_conversion_taken_over",
                    extra={"document_id": document_id, "previous_conversion_id": current.conversion_id},
                )
            elif current.status != DocumentStatus.UPLOADING:
                return False
            updated = current.model_copy(update={
                "status": DocumentStatus.CONVERTING,
                "conversion_id": conversion_id,
                "updated_at": self._next_timestamp(current.updated_at),
            })
            self._save(updated)
            self._notify(updated)
            return True

    def owns_conversion(self, document_id: str, conversion_id: str) -> bool:
        record = self._load(document_id)
        return record is not None and record.conversion_id == conversion_id

    def find_stale(self, status: DocumentStatus, older_than: float) -> List[DocumentRecord]:
        stale = []
        for document_id in self._document_ids():
            record = self._load(document_id)
            if record is not None and record.status == status and self._age(record) >= older_than:
                stale.append(record)
        return stale

    def subscribe(self, document_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every change of the record.

        The callback is invoked right away with the current record, if any.
        Returns a function that cancels the subscription.
        """
        with self._subscribers_lock:
            self._subscribers.setdefault(document_id, []).append(callback)
        current = self._load(document_id)
        if current is not None:
            self._deliver(callback, current)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                callbacks = self._subscribers.get(document_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(document_id, None)

        return unsubscribe

    def _require(self, document_id: str) -> DocumentRecord:
        record = self._load(document_id)
        if record is None:
            raise DocumentNotFound(f"Document {document_id} does not exist")
        return record

    def _merge(self, current: DocumentRecord, fields: dict) -> Optional[DocumentRecord]:
        changes = dict(fields)
        status_changed = False
        if "status" in changes:
            target = DocumentStatus(changes["status"])
            changes["status"] = target
            if target != current.status:
                if target not in ALLOWED_TRANSITIONS[current.status]:
                    raise StatusTransitionError(current.document_id, current.status, target)
                status_changed = True

        before = current.model_dump()
        merged = dict(before)
        merged.update(changes)
        if merged == before:
            return None
        if status_changed:
            merged["updated_at"] = self._next_timestamp(current.updated_at)
        return DocumentRecord.model_validate(merged)

    def _next_timestamp(self, previous: Optional[datetime]) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _age(self, record: DocumentRecord) -> float:
        if record.updated_at is None:
            return math.inf
        return (self._clock() - record.updated_at).total_seconds()

    def _notify(self, record: DocumentRecord) -> None:
        with self._subscribers_lock:
            callbacks = list(self._subscribers.get(record.document_id, ()))
        for callback in callbacks:
            self._deliver(callback, record)

    def _deliver(self, callback: Subscriber, record: DocumentRecord) -> None:
        try:
            callback(record.model_copy(deep=True))
        except Exception:
            logger.warning("subscriber_failed", exc_info=True, extra={"document_id": record.document_id})


class InMemoryStatusStore(StatusStore):
    """Process-local store; one re-entrant lock per document."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        super().__init__(clock)
        self._records: Dict[str, DocumentRecord] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, document_id):
        with self._locks_guard:
            lock = self._locks.setdefault(document_id, threading.RLock())
        with lock:
            yield

    def _load(self, document_id):
        record = self._records.get(document_id)
        return record.model_copy(deep=True) if record is not None else None

    def _save(self, record):
        self._records[record.document_id] = record.model_copy(deep=True)

    def _document_ids(self):
        return list(self._records)


class FileStatusStore(StatusStore):
    """One JSON file per document, guarded by an exclusive ``flock``.

    The lock is taken on a separate lock file so that it works across
    processes (API server and Celery workers sharing ``STATE_DIR``).
    """

    def __init__(self, root: str, clock: Callable[[], datetime] = _utcnow) -> None:
        super().__init__(clock)
        self.root = Path(root).resolve()
        self._records_dir = self.root / "documents"
        self._locks_dir = self.root / "locks"
        self._records_dir.mkdir(parents=True, exist_ok=True)
        self._locks_dir.mkdir(parents=True, exist_ok=True)

    def _record_path(self, document_id: str) -> Path:
        if not is_safe_id(document_id):
            raise DocumentNotFound(f"Invalid document id: {document_id!r}")
        return self._records_dir / f"{document_id}.json"

    @contextmanager
    def _locked(self, document_id):
        self._record_path(document_id)
        with open(self._locks_dir / f"{document_id}.lock", "a+") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _load(self, document_id):
        path = self._record_path(document_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        try:
            return DocumentRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise StatusStoreError(f"Corrupt record for {document_id}") from exc

    def _save(self, record):
        atomic_write(self._record_path(record.document_id), record.model_dump_json().encode("utf-8"))

    def _document_ids(self):
        return sorted(p.stem for p in self._records_dir.glob("*.json"))
