"""Process-wide collaborators built from settings.

Each process (API server, Celery worker) builds its own instances; nothing
here is shared between processes. Routes receive them through ``Depends``.
"""

from functools import lru_cache

from conversion.base import ConversionStrategy
from conversion.local import LocalConversionEngine
from conversion.orchestrator import ConversionOrchestrator
from conversion.remote import RemoteConversionDelegate, ServiceTokenProvider
from storage.object_store import LocalObjectStore, ObjectStore
from storage.status_store import FileStatusStore, InMemoryStatusStore, StatusStore
from utils.config import Settings, clear_settings_cache, get_settings


@lru_cache(maxsize=1)
def get_status_store() -> StatusStore:
	settings = get_settings()
	if settings.status_store == "memory":
		return InMemoryStatusStore()
	return FileStatusStore(settings.state_dir)


@lru_cache(maxsize=1)
def get_object_store() -> ObjectStore:
	settings = get_settings()
	return LocalObjectStore(settings.storage_dir, settings.public_base_url, bucket=settings.storage_bucket)


def build_local_engine(settings: Settings, object_store: ObjectStore) -> LocalConversionEngine:
	return LocalConversionEngine(
		object_store,
		scale=settings.render_scale,
		quality=settings.jpeg_quality,
		max_pages=settings.max_page_count,
		max_workers=settings.render_workers,
		status_store=get_status_store(),
	)


def build_service_token_provider(settings: Settings) -> ServiceTokenProvider:
	return ServiceTokenProvider(
		settings.service_token_secret,
		settings.service_token_audience,
		ttl_seconds=settings.service_token_ttl_seconds,
	)


def build_strategy(settings: Settings, object_store: ObjectStore) -> ConversionStrategy:
	if settings.conversion_strategy == "remote":
		return RemoteConversionDelegate(
			settings.converter_base_url,
			build_service_token_provider(settings),
			timeout=settings.converter_timeout_seconds,
		)
	return build_local_engine(settings, object_store)


def _build_orchestrator(strategy: ConversionStrategy) -> ConversionOrchestrator:
	settings = get_settings()
	return ConversionOrchestrator(
		strategy,
		get_status_store(),
		get_object_store(),
		upload_prefix=settings.upload_prefix,
		retain_source=settings.retain_source_pdf,
		stale_after=settings.stale_conversion_seconds,
	)


@lru_cache(maxsize=1)
def get_orchestrator() -> ConversionOrchestrator:
	"""Orchestrator using the deployment's configured strategy."""
	return _build_orchestrator(build_strategy(get_settings(), get_object_store()))


@lru_cache(maxsize=1)
def get_rendering_orchestrator() -> ConversionOrchestrator:
	"""Orchestrator of the rendering service role: always renders in-process."""
	return _build_orchestrator(build_local_engine(get_settings(), get_object_store()))


def reset_dependencies() -> None:
	"""Drop every cached collaborator and settings snapshot (tests)."""
	clear_settings_cache()
	for factory in (get_status_store, get_object_store, get_orchestrator, get_rendering_orchestrator):
		factory.cache_clear()
