"""Environment-driven settings for the API process and the Celery workers.

Values are read once per process and cached; ``get_settings(reload=True)``
re-reads the environment (tests use it after changing variables).
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from utils.paths import MAX_PAGE_NUMBER, UPLOAD_PREFIX

logger = logging.getLogger("config")

STRATEGIES = ("local", "remote")
STATUS_STORES = ("file", "memory")


def _env_str(key: str, default: str) -> str:
	val = os.getenv(key)
	return val.strip() if val and val.strip() else default


def _env_int(key: str, default: int) -> int:
	raw = os.getenv(key)
	try:
		return int(raw) if raw is not None and raw.strip() else default
	except ValueError:
		logger.warning("invalid_int_setting", extra={"key": key, "value": raw})
		return default


def _env_float(key: str, default: float) -> float:
	raw = os.getenv(key)
	try:
		return float(raw) if raw is not None and raw.strip() else default
	except ValueError:
		logger.warning("invalid_float_setting", extra={"key": key, "value": raw})
		return default


def _env_bool(key: str, default: bool = False) -> bool:
	raw = os.getenv(key)
	if raw is None:
		return default
	return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
	# storage
	state_dir: str
	storage_dir: str
	storage_bucket: str
	public_base_url: str
	upload_prefix: str
	status_store: str
	analytics_dir: str

	# conversion
	conversion_strategy: str
	render_scale: float
	jpeg_quality: int
	max_page_count: int
	render_workers: int
	retain_source_pdf: bool
	stale_conversion_seconds: float
	reconcile_interval_seconds: float

	# remote rendering service
	converter_base_url: Optional[str]
	converter_timeout_seconds: float
	service_token_secret: str
	service_token_audience: str
	service_token_ttl_seconds: int

	# intake
	max_upload_mb: int


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
	load_dotenv(override=False)

	state_dir = _env_str("STATE_DIR", "state")
	converter_base_url = os.getenv("CONVERTER_BASE_URL") or None
	strategy = _env_str("CONVERSION_STRATEGY", "local").lower()
	if strategy not in STRATEGIES:
		raise ValueError(f"CONVERSION_STRATEGY must be one of {STRATEGIES}, got {strategy!r}")
	status_store = _env_str("STATUS_STORE", "file").lower()
	if status_store not in STATUS_STORES:
		raise ValueError(f"STATUS_STORE must be one of {STATUS_STORES}, got {status_store!r}")
	upload_prefix = _env_str("UPLOAD_PREFIX", UPLOAD_PREFIX)
	if not upload_prefix.endswith("/"):
		upload_prefix += "/"
	max_page_count = _env_int("MAX_PAGE_COUNT", 100)
	if not 1 <= max_page_count <= MAX_PAGE_NUMBER:
		raise ValueError(f"MAX_PAGE_COUNT must be within 1..{MAX_PAGE_NUMBER}, got {max_page_count}")

	settings = Settings(
		state_dir=state_dir,
		storage_dir=_env_str("STORAGE_DIR", "storage_data"),
		storage_bucket=_env_str("STORAGE_BUCKET", "local"),
		public_base_url=_env_str("PUBLIC_BASE_URL", "http://localhost:8000/files"),
		upload_prefix=upload_prefix,
		status_store=status_store,
		analytics_dir=_env_str("ANALYTICS_DIR", os.path.join(state_dir, "analytics")),
		conversion_strategy=strategy,
		render_scale=_env_float("RENDER_SCALE", 1.5),
		jpeg_quality=_env_int("JPEG_QUALITY", 80),
		max_page_count=max_page_count,
		render_workers=_env_int("RENDER_WORKERS", 1),
		retain_source_pdf=_env_bool("RETAIN_SOURCE_PDF", False),
		stale_conversion_seconds=_env_float("STALE_CONVERSION_SECONDS", 900.0),
		reconcile_interval_seconds=_env_float("RECONCILE_INTERVAL_SECONDS", 300.0),
		converter_base_url=converter_base_url.rstrip("/") if converter_base_url else None,
		converter_timeout_seconds=_env_float("CONVERTER_TIMEOUT_SECONDS", 520.0),
		service_token_secret=os.getenv("SERVICE_TOKEN_SECRET", ""),
		service_token_audience=_env_str("SERVICE_TOKEN_AUDIENCE", converter_base_url or "docsflip-converter"),
		service_token_ttl_seconds=_env_int("SERVICE_TOKEN_TTL_SECONDS", 600),
		max_upload_mb=_env_int("MAX_UPLOAD_MB", 25),
	)
	logger.info(
		"settings_loaded",
		extra={
			"strategy": settings.conversion_strategy,
			"status_store": settings.status_store,
			"state_dir": settings.state_dir,
			"storage_dir": settings.storage_dir,
		},
	)
	return settings


def clear_settings_cache() -> None:
	_load_settings.cache_clear()


def get_settings(reload: bool = False) -> Settings:
	if reload:
		clear_settings_cache()
	return _load_settings()
