import csv
import io
import json

import pytest

from conftest import LEAD_HEADER, LEAD_MAPPING, lead_rows
from scouter_importer.api.dependencies.db import get_dispatcher
from scouter_importer.api.routers import health, job_helpers
from scouter_importer.core.config import Settings
from scouter_importer.db.models import ImportStatus
from scouter_importer.services.import_runner import run_import_job


def _csv_bytes(rows):
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=LEAD_HEADER)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def _upload(client, rows, mapping=None, **form):
    data = {"column_mapping": json.dumps(mapping or LEAD_MAPPING)}
    data.update(form)
    return client.post(
        "/api/uploads/",
        files={"file": ("leads.csv", _csv_bytes(rows), "text/csv")},
        data=data,
    )


def test_upload_creates_and_starts_job(client, dispatcher):
    response = _upload(client, lead_rows(5))

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == ImportStatus.PROCESSING
    assert body["file_name"] == "leads.csv"
    assert body["target_table"] == "leads"
    assert body["column_mapping"]["name"] == {"primary": "Nome", "secondary": None, "tertiary": None}
    assert body["processed_rows"] == 0
    assert dispatcher.calls == [body["id"]]


def test_upload_without_auto_start_stays_pending(client, dispatcher):
    response = _upload(client, lead_rows(5), auto_start="false")

    assert response.status_code == 202
    assert response.json()["status"] == ImportStatus.PENDING
    assert dispatcher.calls == []


@pytest.mark.parametrize(
    "mapping,detail",
    [
        ({"name": {"primary": "Apelido"}}, "not found in CSV header"),
        ({"nickname": {"primary": "Nome"}}, "Unknown target field"),
        ({}, "Column mapping is empty"),
    ],
)
def test_upload_rejects_bad_mapping(client, dispatcher, mapping, detail):
    data = {"column_mapping": json.dumps(mapping)}
    response = client.post(
        "/api/uploads/",
        files={"file": ("leads.csv", _csv_bytes(lead_rows(2)), "text/csv")},
        data=data,
    )

    assert response.status_code == 400
    assert detail in response.json()["detail"]
    assert dispatcher.calls == []


def test_upload_rejects_non_csv_and_bad_json(client):
    response = client.post(
        "/api/uploads/",
        files={"file": ("leads.xlsx", b"binary", "application/octet-stream")},
        data={"column_mapping": json.dumps(LEAD_MAPPING)},
    )
    assert response.status_code == 400

    response = client.post(
        "/api/uploads/",
        files={"file": ("leads.csv", _csv_bytes(lead_rows(1)), "text/csv")},
        data={"column_mapping": "{not json"},
    )
    assert response.status_code == 400
    assert "not valid JSON" in response.json()["detail"]


def test_upload_rejects_unlisted_table(client):
    response = _upload(client, lead_rows(2), target_table="import_jobs")

    assert response.status_code == 400
    assert "Unknown target table" in response.json()["detail"]


def test_finished_job_reports_counters_progress_and_capped_errors(
    client, session, dispatcher, settings, monkeypatch
):
    monkeypatch.setattr(job_helpers, "get_settings", lambda: Settings(error_display_limit=2))
    job_id = _upload(client, lead_rows(30, missing_name_at={1, 4, 20})).json()["id"]

    run_import_job(session, job_id, dispatcher, settings=settings)

    body = client.get(f"/api/jobs/{job_id}").json()
    assert body["status"] == ImportStatus.COMPLETED_WITH_ERRORS
    assert (body["total_rows"], body["processed_rows"], body["inserted_rows"], body["failed_rows"]) == (
        30,
        30,
        27,
        3,
    )
    assert body["progress"]["percent"] == 100.0
    assert body["progress"]["eta_seconds"] == 0.0
    assert body["error_count"] == 3
    assert [e["row_index"] for e in body["errors"]] == [3, 6]

    page = client.get(f"/api/jobs/{job_id}/errors", params={"offset": 2, "limit": 10}).json()
    assert page["total"] == 3
    assert [e["row_index"] for e in page["items"]] == [22]


def test_list_jobs_filters_by_status(client):
    running = _upload(client, lead_rows(2)).json()["id"]
    pending = _upload(client, lead_rows(2), auto_start="false").json()["id"]

    all_ids = {job["id"] for job in client.get("/api/jobs/").json()}
    assert {running, pending} <= all_ids

    pending_ids = [job["id"] for job in client.get("/api/jobs/", params={"status": "pending"}).json()]
    assert pending_ids == [pending]

    assert client.get("/api/jobs/", params={"status": "bogus"}).status_code == 400


def test_unknown_job_is_404(client):
    assert client.get("/api/jobs/missing").status_code == 404
    assert client.get("/api/jobs/missing/errors").status_code == 404
    assert client.post("/api/jobs/missing/pause").status_code == 404
    assert client.delete("/api/jobs/missing").status_code == 404


def test_operator_actions(client, dispatcher):
    job_id = _upload(client, lead_rows(3), auto_start="false").json()["id"]

    assert client.post(f"/api/jobs/{job_id}/pause").status_code == 409

    assert client.post(f"/api/jobs/{job_id}/start").json()["status"] == ImportStatus.PROCESSING
    assert client.post(f"/api/jobs/{job_id}/pause").json()["status"] == ImportStatus.PAUSED

    resumed = client.post(f"/api/jobs/{job_id}/resume").json()
    assert resumed["status"] == ImportStatus.PENDING
    assert dispatcher.calls == [job_id, job_id]

    cancelled = client.post(f"/api/jobs/{job_id}/cancel").json()
    assert cancelled["status"] == ImportStatus.FAILED
    assert cancelled["error_message"] == "cancelled by user"

    assert client.post(f"/api/jobs/{job_id}/resume").status_code == 409
    assert client.post(f"/api/jobs/{job_id}/reset").json()["status"] == ImportStatus.PENDING

    assert client.delete(f"/api/jobs/{job_id}").status_code == 409
    client.post(f"/api/jobs/{job_id}/cancel")
    assert client.delete(f"/api/jobs/{job_id}").status_code == 204
    assert client.get(f"/api/jobs/{job_id}").status_code == 404


def test_restart_needs_force_after_inserts(client, session, dispatcher, settings, store):
    job_id = _upload(client, lead_rows(3)).json()["id"]
    run_import_job(session, job_id, dispatcher, settings=settings)
    store.update(job_id, status=ImportStatus.FAILED)

    response = client.post(f"/api/jobs/{job_id}/restart")
    assert response.status_code == 409
    assert "force=true" in response.json()["detail"]

    response = client.post(f"/api/jobs/{job_id}/restart", params={"force": "true"})
    assert response.status_code == 200
    assert response.json()["inserted_rows"] == 0


def test_enqueue_failure_is_reported(client, dispatcher):
    def broken(job_id):
        raise ConnectionError("broker down")

    client.app.dependency_overrides[get_dispatcher] = lambda: broken

    response = _upload(client, lead_rows(2))
    assert response.status_code == 503

    jobs = client.get("/api/jobs/").json()
    assert jobs[0]["status"] == ImportStatus.FAILED
    assert "broker down" in jobs[0]["error_message"]


def test_stream_closes_once_job_is_terminal(client, session, dispatcher, settings):
    job_id = _upload(client, lead_rows(4)).json()["id"]
    run_import_job(session, job_id, dispatcher, settings=settings)

    response = client.get(f"/api/jobs/{job_id}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [chunk for chunk in response.text.split("\n\n") if chunk]
    payload = json.loads(events[0].removeprefix("data: "))
    assert payload["status"] == ImportStatus.COMPLETED
    assert events[-1].startswith("event: close")


def test_stream_unknown_job_is_404(client):
    assert client.get("/api/jobs/missing/stream").status_code == 404


def test_health_endpoints(client, engine, fake_redis, monkeypatch):
    monkeypatch.setattr(health, "engine", engine)
    monkeypatch.setattr(health, "create_redis_client", lambda url, **kwargs: fake_redis)

    assert client.get("/health/live").json()["status"] == "ok"

    body = client.get("/health/ready").json()
    assert body["status"] == "ok"
    assert body["checks"]["database"]["active_jobs"] == {"paused": 0, "pending": 0, "processing": 0}
    assert body["checks"]["redis"]["status"] == "healthy"
