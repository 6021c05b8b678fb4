import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import comicfit.api.v1.jobs as jobs_api
from comicfit.core.enums import JobStatus
from comicfit.main import app
from comicfit.services.job_store import job_service, pipeline_service
from comicfit.services.mobi_service import MobiConverter


def cbz_upload(count: int = 2) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for i in range(count):
            page = io.BytesIO()
            Image.new("L", (300, 420), 60 + i).save(page, "PNG")
            zf.writestr(f"p{i + 1}.png", page.getvalue())
    return buffer.getvalue()


CBZ_CONFIG = json.dumps(
    {
        "device": "kobo-clara-hd",
        "output_format": "cbz",
        "image_format": "png",
        "split": "none",
        "worker_count": 2,
    }
)


@pytest.fixture
def client(tmp_path, monkeypatch):
    job_service._jobs = {}
    monkeypatch.setattr(jobs_api.settings, "data_dir", tmp_path)
    monkeypatch.setattr(pipeline_service, "data_dir", tmp_path)
    return TestClient(app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_devices_lists_presets(client):
    response = client.get("/api/v1/devices")

    assert response.status_code == 200
    devices = {d["id"]: d for d in response.json()}
    assert devices["kindle-pw-11"] == {
        "id": "kindle-pw-11",
        "name": "Kindle PW 11",
        "width": 1236,
        "height": 1648,
    }


def test_upload_creates_job_with_config(client):
    response = client.post(
        "/api/v1/jobs",
        files={"file": ("My Comic.cbz", cbz_upload(), "application/zip")},
        data={"config": CBZ_CONFIG},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "uploaded"
    assert data["title"] == "My Comic"
    assert data["output_format"] == "cbz"
    assert data["device"] == "Kobo Clara HD"
    assert data["progress_current"] == 0
    assert data["progress_total"] is None

    job = job_service.get_job(data["job_id"])
    assert job.input_path.read_bytes() == cbz_upload()
    assert job.input_path.name == "input.cbz"


def test_upload_rejects_unsupported_and_empty_files(client):
    response = client.post("/api/v1/jobs", files={"file": ("doc.pdf", b"%PDF", "application/pdf")})
    assert response.status_code == 400

    response = client.post("/api/v1/jobs", files={"file": ("empty.cbz", b"", "application/zip")})
    assert response.status_code == 400


def test_upload_rejects_invalid_config(client):
    response = client.post(
        "/api/v1/jobs",
        files={"file": ("a.cbz", cbz_upload(), "application/zip")},
        data={"config": json.dumps({"quality": 500})},
    )
    assert response.status_code == 422

    response = client.post(
        "/api/v1/jobs",
        files={"file": ("a.cbz", cbz_upload(), "application/zip")},
        data={"config": json.dumps({"device": "unknown-reader"})},
    )
    assert response.status_code == 422


def test_process_and_download(client):
    created = client.post(
        "/api/v1/jobs",
        files={"file": ("Saga.cbz", cbz_upload(3), "application/zip")},
        data={"config": CBZ_CONFIG},
    ).json()
    job_id = created["job_id"]

    response = client.post(f"/api/v1/jobs/{job_id}/process")
    assert response.status_code == 202

    # TestClient ejecuta las background tasks antes de devolver la respuesta
    status = client.get(f"/api/v1/jobs/{job_id}").json()
    assert status["status"] == "completed"
    assert status["outcome"] == "succeeded"
    assert status["num_pages"] == 3
    assert status["pages_succeeded"] == 3
    assert status["pages_failed"] == 0
    assert status["progress_stage"] == "completed"

    download = client.get(f"/api/v1/jobs/{job_id}/download")
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/vnd.comicbook+zip"
    assert 'filename="Saga.cbz"' in download.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(download.content)) as zf:
        assert [n for n in zf.namelist() if n.startswith("page_")] == [
            "page_0001.png",
            "page_0002.png",
            "page_0003.png",
        ]


def test_download_before_processing_is_rejected(client):
    job_id = client.post(
        "/api/v1/jobs",
        files={"file": ("a.cbz", cbz_upload(), "application/zip")},
    ).json()["job_id"]

    assert client.get(f"/api/v1/jobs/{job_id}/download").status_code == 400


def test_cancel_sets_job_event(client):
    job_id = client.post(
        "/api/v1/jobs",
        files={"file": ("a.cbz", cbz_upload(), "application/zip")},
    ).json()["job_id"]

    response = client.post(f"/api/v1/jobs/{job_id}/cancel")

    assert response.status_code == 200
    assert job_service.cancel_event(job_id).is_set()
    assert job_service.get_job(job_id).status == JobStatus.UPLOADED


def test_unknown_job_returns_404(client):
    assert client.get("/api/v1/jobs/missing").status_code == 404
    assert client.post("/api/v1/jobs/missing/process").status_code == 404
    assert client.post("/api/v1/jobs/missing/cancel").status_code == 404


def test_process_after_cancel_runs_normally(client):
    job_id = client.post(
        "/api/v1/jobs",
        files={"file": ("a.cbz", cbz_upload(), "application/zip")},
        data={"config": CBZ_CONFIG},
    ).json()["job_id"]
    client.post(f"/api/v1/jobs/{job_id}/cancel")

    assert client.post(f"/api/v1/jobs/{job_id}/process").status_code == 202

    status = client.get(f"/api/v1/jobs/{job_id}").json()
    assert status["status"] == "completed"
    assert status["pages_succeeded"] == 2


def test_download_falls_back_to_epub_when_kindlegen_is_missing(client, monkeypatch):
    monkeypatch.setattr(
        pipeline_service, "mobi_converter", MobiConverter(binary="kindlegen", which=lambda name: None)
    )
    mobi_config = json.dumps({"output_format": "mobi", "split": "none", "worker_count": 2})
    job_id = client.post(
        "/api/v1/jobs",
        files={"file": ("Saga.cbz", cbz_upload(), "application/zip")},
        data={"config": mobi_config},
    ).json()["job_id"]
    client.post(f"/api/v1/jobs/{job_id}/process")

    status = client.get(f"/api/v1/jobs/{job_id}").json()
    assert status["status"] == "failed"
    assert status["error_kind"] == "external_tool"
    assert status["epub_path"].endswith("output.epub")

    download = client.get(f"/api/v1/jobs/{job_id}/download")
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/epub+zip"
    assert 'filename="Saga.epub"' in download.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(download.content)) as zf:
        assert zf.namelist()[0] == "mimetype"
