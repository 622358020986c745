import json

from conftest import MAPPING, make_rows
from app.crud import import_jobs as ledger
from app.db.models.import_job import ImportStatus
from app.worker.tasks import execute_import

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _upload(client, path, mapping):
    with open(path, "rb") as f:
        return client.post(
            "/imports/upload",
            files={"file": (path.name, f, XLSX)},
            data={"mapping": json.dumps(mapping)},
        )


def test_fields_and_template(client):
    r = client.get("/imports/fields")
    assert r.status_code == 200
    required = {f["value"] for f in r.json() if f["required"]}
    assert required == {"species", "breed", "diagnosisDate"}

    r = client.get("/imports/template")
    assert r.status_code == 200
    assert r.text.startswith("patient_name,species,breed")


def test_upload_enqueues_job(client, xlsx_file):
    r = _upload(client, xlsx_file(make_rows(3)), MAPPING)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == ImportStatus.pending.value
    assert body["clinic_id"] == client.identity.clinic_id
    assert client.enqueued == [body["id"]]


def test_upload_with_incomplete_mapping_returns_failed_job(client, xlsx_file):
    r = _upload(client, xlsx_file(make_rows(3)), {"Pet Name": "patientName", "Kind": "species"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == ImportStatus.failed.value
    assert body["has_error_report"]
    assert client.enqueued == []

    errors = client.get(f"/imports/{body['id']}/errors").json()
    assert {e["column"] for e in errors} == {"breed", "diagnosisDate"}

    r = client.get(f"/imports/{body['id']}/error-report")
    assert r.status_code == 200
    assert r.content[:2] == b"PK"


def test_upload_rejects_other_extensions(client, tmp_path):
    path = tmp_path / "cases.txt"
    path.write_text("Kind\nCanine\n")
    r = _upload(client, path, MAPPING)
    assert r.status_code == 400


def test_upload_rejects_bad_mapping_json(client, xlsx_file):
    path = xlsx_file(make_rows(1))
    with open(path, "rb") as f:
        r = client.post("/imports/upload", files={"file": (path.name, f, XLSX)}, data={"mapping": "not json"})
    assert r.status_code == 400


def test_job_lifecycle_over_http(client, session_factory, xlsx_file):
    job_id = _upload(client, xlsx_file(make_rows(4, bad_date_at=2)), MAPPING).json()["id"]

    db = session_factory()
    try:
        execute_import(db, job_id)
    finally:
        db.close()

    body = client.get(f"/imports/{job_id}").json()
    assert body["status"] == ImportStatus.completed.value
    assert (body["processed_rows"], body["success_rows"], body["error_rows"]) == (4, 3, 1)
    assert [j["id"] for j in client.get("/imports").json()] == [job_id]

    r = client.post(f"/imports/{job_id}/cancel")
    assert r.status_code == 200
    assert r.json()["status"] == ImportStatus.completed.value


def test_unknown_job_is_404(client):
    assert client.get("/imports/12345").status_code == 404
    assert client.get("/imports/12345/errors").status_code == 404
    assert client.post("/imports/12345/cancel").status_code == 404


def test_cancel_pending_job(client, session_factory, xlsx_file):
    job_id = _upload(client, xlsx_file(make_rows(2)), MAPPING).json()["id"]
    r = client.post(f"/imports/{job_id}/cancel")
    assert r.json()["status"] == ImportStatus.failed.value

    db = session_factory()
    try:
        assert execute_import(db, job_id) is None
        assert ledger.get_import_job(db, job_id).processed_rows == 0
    finally:
        db.close()
