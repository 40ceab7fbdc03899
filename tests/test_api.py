"""HTTP-level tests for the conversion and history endpoints."""

import io
import json

from pypdf import PdfReader

from fakes import FakeExternalClient
from fileconvert.api.endpoints.convert import content_disposition
from fileconvert.core.config import Settings
from fileconvert.core.exceptions import ExternalConversionError
from fileconvert.services.conversion_service import build_dispatcher


def _upload(client, filename, data, conversion_type, target_format, options=None):
    form = {"conversionType": conversion_type, "targetFormat": target_format}
    if options is not None:
        form["options"] = options
    return client.post("/api/convert", files={"file": (filename, data)}, data=form)


# -- POST /api/convert ------------------------------------------------------


def test_convert_returns_file_attachment(client, history_store):
    response = _upload(client, "notes.txt", b"Hello\nWorld", "text-to-pdf", "pdf")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == 'attachment; filename="notes_converted.pdf"'
    assert len(PdfReader(io.BytesIO(response.content)).pages) == 1

    (record,) = history_store.list()
    assert record.file_name == "notes.txt"
    assert record.original_format == "txt"
    assert record.target_format == "pdf"
    assert record.file_size == 11
    assert record.status == "completed"


def test_convert_rejects_unsupported_extension(client, external_client, history_store):
    response = _upload(client, "virus.exe", b"MZ", "word-to-pdf", "pdf")

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "UnsupportedFileType"
    assert ".exe" in body["message"]
    assert external_client.calls == []
    assert history_store.list() == []


def test_convert_rejects_unknown_conversion_type(client):
    response = _upload(client, "a.pdf", b"%PDF", "pdf-to-excel", "xlsx")

    assert response.status_code == 400
    assert response.json()["error"] == "UnsupportedConversionType"


def test_convert_requires_a_file(client):
    response = client.post("/api/convert", data={"conversionType": "text-to-pdf", "targetFormat": "pdf"})

    assert response.status_code == 400
    assert response.json() == {"message": "No file uploaded."}


def test_convert_requires_type_and_target(client):
    response = client.post("/api/convert", files={"file": ("a.txt", b"hi")}, data={"conversionType": "text-to-pdf"})

    assert response.status_code == 400
    assert response.json()["message"] == "Missing conversionType or targetFormat in request body."


def test_convert_rejects_malformed_options(client):
    bad_json = _upload(client, "a.png", b"png", "image-to-pdf", "pdf", options="{not json")
    bad_value = _upload(client, "a.png", b"png", "image-to-pdf", "pdf", options=json.dumps({"quality": 500}))

    assert bad_json.status_code == 400
    assert bad_value.status_code == 400
    assert bad_value.json()["message"] == "Invalid conversion options."


def test_convert_rejects_oversized_upload(make_client, upload_dir, dispatcher):
    small_limit = Settings(UPLOAD_DIR=str(upload_dir), MAX_UPLOAD_MB=0)

    with make_client(small_limit, dispatcher) as client:
        response = _upload(client, "a.txt", b"x", "text-to-pdf", "pdf")

    assert response.status_code == 413
    assert response.json()["error"] == "FileTooLarge"


def test_failed_conversion_is_recorded(make_client, settings, ocr_pool, history_store):
    failing = FakeExternalClient(fail_with=ExternalConversionError("backend down"))

    with make_client(settings, build_dispatcher(settings, external_client=failing, ocr_pool=ocr_pool)) as client:
        response = _upload(client, "a.docx", b"doc", "word-to-pdf", "pdf")

    assert response.status_code == 500
    assert response.json() == {"message": "backend down", "error": "ExternalConversionError"}
    (record,) = history_store.list()
    assert record.status == "failed"


def test_history_recording_can_be_disabled(make_client, upload_dir, dispatcher, history_store):
    quiet = Settings(UPLOAD_DIR=str(upload_dir), RECORD_HISTORY=False)

    with make_client(quiet, dispatcher) as client:
        assert _upload(client, "a.txt", b"hi", "text-to-pdf", "pdf").status_code == 200

    assert history_store.list() == []


def test_content_disposition_handles_non_ascii_names():
    assert content_disposition("plain.pdf") == 'attachment; filename="plain.pdf"'
    header = content_disposition("résumé.pdf")
    assert 'filename="rsum.pdf"' in header
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in header


# -- Health and formats -----------------------------------------------------


def test_health_ok(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "active"


def test_health_reports_unreachable_backend(make_client, settings, ocr_pool):
    broken = FakeExternalClient(health_status="error")

    with make_client(settings, build_dispatcher(settings, external_client=broken, ocr_pool=ocr_pool)) as client:
        response = client.get("/api/health")

    assert response.status_code == 500
    assert response.json()["status"] == "error"


def test_formats_lists_every_conversion_type(client):
    body = client.get("/api/formats").json()

    assert body["text-to-pdf"] == {"from": ["txt"], "to": ["pdf"]}
    assert len(body) == 6


# -- /api/conversions -------------------------------------------------------


def _payload(**overrides):
    payload = {"fileName": "report.docx", "originalFormat": "docx", "targetFormat": "pdf", "fileSize": 2048}
    payload.update(overrides)
    return payload


def test_create_and_list_conversions(client):
    first = client.post("/api/conversions", json=_payload(fileName="first.docx"))
    second = client.post("/api/conversions", json=_payload(fileName="second.docx", status="failed"))

    assert first.status_code == 201
    body = second.json()
    assert body["id"] == 2
    assert body["fileName"] == "second.docx"
    assert body["status"] == "failed"
    assert "createdAt" in body

    listed = client.get("/api/conversions").json()
    assert [r["fileName"] for r in listed] == ["second.docx", "first.docx"]


def test_create_conversion_validation_error(client):
    response = client.post("/api/conversions", json=_payload(fileSize=-5))

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid conversion data"
    assert body["error"] == "ValidationError"
    assert body["errors"]


def test_recent_conversions(client):
    client.post("/api/conversions", json=_payload())

    response = client.get("/api/conversions/recent/7")

    assert response.status_code == 200
    assert len(response.json()) == 1


def test_recent_conversions_rejects_bad_days(client):
    for days in ("abc", "-1", "1.5"):
        response = client.get(f"/api/conversions/recent/{days}")
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid days parameter", "error": "ValidationError"}


def test_recent_conversions_with_huge_window_returns_everything(client):
    client.post("/api/conversions", json=_payload())

    for days in ("1000000", "99999999999"):
        response = client.get(f"/api/conversions/recent/{days}")
        assert response.status_code == 200
        assert len(response.json()) == 1


def test_delete_conversion_is_idempotent(client):
    created = client.post("/api/conversions", json=_payload()).json()

    assert client.delete(f"/api/conversions/{created['id']}").status_code == 204
    assert client.delete(f"/api/conversions/{created['id']}").status_code == 204
    assert client.delete("/api/conversions/999999").status_code == 204
    assert client.get("/api/conversions").json() == []


def test_delete_conversion_rejects_bad_id(client):
    response = client.delete("/api/conversions/not-a-number")

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid conversion ID", "error": "ValidationError"}
