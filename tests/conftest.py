"""Shared fixtures: settings pointed at tmp dirs, fake backends, a wired dispatcher."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from fakes import FakeExternalClient, FakeOCRWorker
from fileconvert.core.config import Settings
from fileconvert.main import create_app
from fileconvert.services.conversion_service import build_dispatcher
from fileconvert.services.history_service import InMemoryHistoryStore
from fileconvert.services.ocr_service import OCRWorkerPool


@pytest.fixture
def upload_dir(tmp_path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def settings(upload_dir) -> Settings:
    return Settings(UPLOAD_DIR=str(upload_dir), RETRY_DELAY_SEC=0.0, LOG_LEVEL="WARNING")


@pytest.fixture
def external_client() -> FakeExternalClient:
    return FakeExternalClient()


@pytest.fixture
def ocr_worker() -> FakeOCRWorker:
    return FakeOCRWorker()


@pytest.fixture
def ocr_pool(ocr_worker) -> OCRWorkerPool:
    return OCRWorkerPool(lambda: ocr_worker, size=1, acquire_timeout=1.0)


@pytest.fixture
def dispatcher(settings, external_client, ocr_pool):
    return build_dispatcher(settings, external_client=external_client, ocr_pool=ocr_pool)


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def make_client(history_store):
    """Builds a TestClient around an app with the given settings and dispatcher."""
    def _make(app_settings, app_dispatcher):
        app = create_app(app_settings)
        app.state.dispatcher = app_dispatcher
        app.state.history_store = history_store
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client, settings, dispatcher):
    with make_client(settings, dispatcher) as test_client:
        yield test_client
