import os
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime, timezone
from pathlib import Path
import contextvars
from typing import Optional

from fastapi import Request
from starlette.responses import Response

from utils.jwt import verify_access_token

# Context variables for correlation, user and document identity
correlation_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("correlation_id", default=None)
user_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("user_id", default=None)
document_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("document_id", default=None)

# Attributes every LogRecord has; anything else was passed through `extra`.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class ContextFilter(logging.Filter):
	def filter(self, record: logging.LogRecord) -> bool:
		record.correlation_id = correlation_id_ctx.get()
		# Explicit `extra` values win over the request context
		if getattr(record, "user_id", None) is None:
			record.user_id = user_id_ctx.get()
		if getattr(record, "document_id", None) is None:
			record.document_id = document_id_ctx.get()
		return True


class JsonFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		payload = {
			"timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
			"level": record.levelname,
			"logger": record.name,
			"message": record.getMessage(),
			"correlation_id": getattr(record, "correlation_id", None),
			"user_id": getattr(record, "user_id", None),
		}
		for key, val in vars(record).items():
			if key in _RESERVED or key in payload or val is None:
				continue
			payload[key] = val if isinstance(val, (str, int, float, bool, list, dict)) else str(val)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, ensure_ascii=False, default=str)


def _level() -> int:
	level_name = os.getenv("LOG_LEVEL", "INFO").upper()
	return getattr(logging, level_name, logging.INFO)


def _make_rotating_file_handler(path: Path, level: int) -> logging.Handler:
	path.parent.mkdir(parents=True, exist_ok=True)
	handler = TimedRotatingFileHandler(path, when="midnight", backupCount=int(os.getenv("LOG_BACKUP_COUNT", "7")), utc=True)
	handler.setLevel(level)
	handler.setFormatter(JsonFormatter())
	handler.addFilter(ContextFilter())
	return handler


def init_logging():
	"""Initialize application logging with console + rotating file handlers."""
	log_dir = Path(os.getenv("LOG_DIR", "logs"))
	level = _level()

	root = logging.getLogger()
	root.setLevel(level)

	# Remove existing handlers to avoid duplicates on reload
	for h in list(root.handlers):
		root.removeHandler(h)

	# Console handler (still JSON for consistency)
	console = logging.StreamHandler()
	console.setLevel(level)
	console.setFormatter(JsonFormatter())
	console.addFilter(ContextFilter())
	root.addHandler(console)

	# File handlers
	app_log = _make_rotating_file_handler(log_dir / "app.log", level)
	error_log = _make_rotating_file_handler(log_dir / "error.log", logging.ERROR)
	root.addHandler(app_log)
	root.addHandler(error_log)

	logging.getLogger(__name__).info("Logging initialized")


def install_request_logging(app):
	"""Attach request logging middleware to the FastAPI app."""
	logger = logging.getLogger("request")

	@app.middleware("http")
	async def _log_middleware(request: Request, call_next):
		# Correlation ID from headers if provided; otherwise generate
		corr = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")
		if not corr:
			corr = os.urandom(8).hex()
		correlation_id_ctx.set(corr)

		# Best-effort parse of user id from Authorization to enrich logs
		auth_header = request.headers.get("Authorization")
		user_id_ctx.set(None)
		if auth_header:
			raw = auth_header.split(" ", 1)[1] if " " in auth_header else auth_header
			payload = verify_access_token(raw)
			if payload and "id" in payload:
				user_id_ctx.set(str(payload["id"]))

		start = datetime.now(timezone.utc)
		try:
			response: Response = await call_next(request)
			latency_ms = int((datetime.now(timezone.utc) - start).total_seconds() * 1000)
			logger.info(
				"request_completed",
				extra={
					"path": request.url.path,
					"method": request.method,
					"status_code": response.status_code,
					"latency_ms": latency_ms,
					"client_host": request.client.host if request.client else None,
				},
			)
			response.headers["X-Request-ID"] = corr
			return response
		except Exception:
			latency_ms = int((datetime.now(timezone.utc) - start).total_seconds() * 1000)
			logger.error(
				"request_failed",
				exc_info=True,
				extra={
					"path": request.url.path,
					"method": request.method,
					"status_code": 500,
					"latency_ms": latency_ms,
					"client_host": request.client.host if request.client else None,
				},
			)
			raise
		finally:
			# Clear context to avoid bleeding into other requests
			correlation_id_ctx.set(None)
			user_id_ctx.set(None)


def init_worker_logging():
	"""Initialize logging for Celery workers with a dedicated rotating file."""
	log_dir = Path(os.getenv("LOG_DIR", "logs"))
	level = _level()

	handler = _make_rotating_file_handler(log_dir / "tasks.log", level)
	for name in ("celery", "tasks", "conversion", "storage"):
		logger = logging.getLogger(name)
		logger.setLevel(level)

		# Avoid duplicate handlers on worker autoreload
		for h in list(logger.handlers):
			logger.removeHandler(h)

		logger.addHandler(handler)
		logger.propagate = True

	logging.getLogger("celery").info("Celery worker logging initialized")
