import os
import shutil
import tempfile
import importlib
from datetime import datetime, timedelta, timezone
import pytest
from fastapi.testclient import TestClient
import sys

# Ensure project root is on sys.path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
	sys.path.insert(0, PROJECT_ROOT)

# Env must be in place before the app, Celery and JWT modules are imported
_BASE_DIR = tempfile.mkdtemp(prefix="docsflip_tests_")
os.environ["LOG_DIR"] = os.path.join(_BASE_DIR, "logs")
os.environ["JWT_SECRET"] = "test_secret"
os.environ["SERVICE_TOKEN_SECRET"] = "test_service_secret"
os.environ["SERVICE_TOKEN_AUDIENCE"] = "docsflip-converter"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["PUBLIC_BASE_URL"] = "http://testserver/files"
os.environ["CONVERSION_STRATEGY"] = "local"
os.environ["STATUS_STORE"] = "file"

import fitz  # PyMuPDF

PUBLIC_BASE_URL = os.environ["PUBLIC_BASE_URL"]
RED = (1, 0, 0)
GREEN = (0, 1, 0)
BLUE = (0, 0, 1)


def pytest_sessionfinish(session, exitstatus):
	shutil.rmtree(_BASE_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
	# Fresh state and storage directories for every test
	monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))
	monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "storage"))
	monkeypatch.setenv("ANALYTICS_DIR", str(tmp_path / "analytics"))
	from utils.dependencies import reset_dependencies
	reset_dependencies()
	yield tmp_path
	reset_dependencies()


@pytest.fixture(scope="session")
def app_client():
	# Import app fresh
	import main as main_module
	importlib.reload(main_module)
	app = main_module.app
	client = TestClient(app)
	return client


class FakeClock:
	def __init__(self, start=None):
		self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

	def __call__(self):
		return self.now

	def advance(self, seconds):
		self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
	return FakeClock()


def make_pdf(pages: int = 1, colors=None) -> bytes:
	"""Build a PDF of 200x300pt pages, each optionally filled with one color."""
	doc = fitz.open()
	for i in range(pages):
		page = doc.new_page(width=200, height=300)
		if colors:
			color = colors[i % len(colors)]
			page.draw_rect(page.rect, color=color, fill=color)
		page.insert_text((20, 40), f"Page {i + 1}")
	data = doc.tobytes()
	doc.close()
	return data


def auth_headers(user_id: str = "user-1") -> dict:
	from utils.jwt import create_access_token
	return {"Authorization": f"Bearer {create_access_token({'id': user_id})}"}


def service_headers() -> dict:
	from conversion.remote import ServiceTokenProvider
	provider = ServiceTokenProvider(os.environ["SERVICE_TOKEN_SECRET"], os.environ["SERVICE_TOKEN_AUDIENCE"])
	return {"Authorization": f"Bearer {provider.get_token()}"}


def url_to_path(url: str) -> str:
	"""Turn a public URL into the path served by the test client."""
	assert url.startswith("http://testserver/")
	return url[len("http://testserver"):]
