"""Viewer analytics: a one-way side channel that never blocks viewing.

Events are sent with ``send_viewer_event`` (enqueued to the worker, failures
swallowed) and the worker appends them to per-document daily JSONL files.
"""

import fcntl
import json
import logging
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from models.analytics import ViewerEvent, ViewerEventType

logger = logging.getLogger("analytics")


def send_viewer_event(event: ViewerEvent) -> None:
	"""Fire-and-forget: enqueue the event, never raise."""
	try:
		from tasks.celery_tasks import record_viewer_event_task

		record_viewer_event_task.delay(event.model_dump(mode="json"))
	except Exception as exc:
		logger.warning(
			"viewer_event_dropped",
			extra={"document_id": event.document_id, "event_type": event.event_type.value, "error": str(exc)},
		)


def _events_file(analytics_dir: str, document_id: str, for_date: date) -> Path:
	return Path(analytics_dir) / document_id / f"{for_date.isoformat()}.jsonl"


def append_viewer_event(event: ViewerEvent, analytics_dir: str) -> Path:
	if event.timestamp is None:
		event = event.model_copy(update={"timestamp": datetime.now(timezone.utc)})
	path = _events_file(analytics_dir, event.document_id, event.timestamp.date())
	path.parent.mkdir(parents=True, exist_ok=True)
	with open(path, "a", encoding="utf-8") as f:
		# Exclusive lock for writing
		fcntl.flock(f.fileno(), fcntl.LOCK_EX)
		f.write(event.model_dump_json() + "\n")
		fcntl.flock(f.fileno(), fcntl.LOCK_UN)
	return path


def read_viewer_events(document_id: str, for_date: date, analytics_dir: str) -> List[Dict]:
	path = _events_file(analytics_dir, document_id, for_date)
	if not path.exists():
		return []
	events = []
	with open(path, "r", encoding="utf-8") as f:
		fcntl.flock(f.fileno(), fcntl.LOCK_SH)
		lines = f.readlines()
		fcntl.flock(f.fileno(), fcntl.LOCK_UN)
	for line in lines:
		try:
			events.append(json.loads(line))
		except json.JSONDecodeError:
			# Skip malformed lines
			continue
	return events


class ViewerSessionTracker:
	"""Tracks one viewing session of a document.

	``ended`` reports the highest page reached during the session, not the
	page the viewer happened to be on when it closed, and fires only once.
	"""

	def __init__(
		self,
		document_id: str,
		owner_id: Optional[str] = None,
		emit: Optional[Callable[[ViewerEvent], None]] = None,
		session_id: Optional[str] = None,
	) -> None:
		self.document_id = document_id
		self.owner_id = owner_id
		self.session_id = session_id or str(uuid.uuid4())
		self.max_page_reached = 1
		self._emit = emit or send_viewer_event
		self._ended = False

	def opened(self) -> None:
		self._send(ViewerEventType.OPENED)

	def page_turned(self, page: int) -> None:
		if page < 1 or self._ended:
			return
		self.max_page_reached = max(self.max_page_reached, page)
		self._send(ViewerEventType.PAGE_TURNED, page_number=page)

	def ended(self) -> None:
		if self._ended:
			return
		self._ended = True
		self._send(ViewerEventType.SESSION_ENDED, pages_reached=self.max_page_reached)

	def _send(self, event_type: ViewerEventType, **fields) -> None:
		event = ViewerEvent(
			document_id=self.document_id,
			event_type=event_type,
			session_id=self.session_id,
			user_id=self.owner_id,
			timestamp=datetime.now(timezone.utc),
			**fields,
		)
		try:
			self._emit(event)
		except Exception as exc:
			# Analytics must never break the viewer
			logger.debug("viewer_event_emit_failed", extra={"document_id": self.document_id, "error": str(exc)})
