from pathlib import Path

import pytest

from conftest import HEADER, MAPPING, make_rows
from app.crud import import_jobs as ledger
from app.db.models.import_job import ImportStatus
from app.services.imports.service import (
    JobNotFound,
    cancel_job,
    get_error_report,
    get_job_status,
    preview_file,
    submit_import_job,
)


def _submit(db, clinic, manager, mapping, enqueued, headers=HEADER):
    return submit_import_job(
        db, clinic.id, manager.id, "cases.xlsx", "/tmp/cases.xlsx", mapping,
        enqueue=enqueued.append, headers=headers,
    )


def test_incomplete_mapping_fails_job_without_enqueueing(db, clinic, manager):
    enqueued = []
    job = _submit(db, clinic, manager, {"Pet Name": "patientName", "Kind": "species"}, enqueued)

    assert enqueued == []
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason == "Column mapping is invalid"
    messages = [e.message for e in ledger.list_import_job_errors(db, job.id)]
    assert any("'breed'" in m for m in messages)
    assert any("'diagnosisDate'" in m for m in messages)
    assert Path(job.error_report_path).exists()


def test_valid_mapping_is_enqueued(db, clinic, manager):
    enqueued = []
    job = _submit(db, clinic, manager, MAPPING, enqueued)
    assert job.status == ImportStatus.pending.value
    assert enqueued == [job.id]


def test_jobs_of_other_clinics_are_not_visible(db, clinic, manager):
    job = _submit(db, clinic, manager, MAPPING, [])
    assert get_job_status(db, job.id, clinic.id).id == job.id
    with pytest.raises(JobNotFound):
        get_job_status(db, job.id, clinic.id + 1)
    with pytest.raises(JobNotFound):
        cancel_job(db, job.id, clinic.id + 1)


def test_cancel_pending_job(db, clinic, manager):
    job = _submit(db, clinic, manager, MAPPING, [])
    assert cancel_job(db, job.id, clinic.id).status == ImportStatus.failed.value


def test_error_report_only_when_there_are_errors(db, clinic, manager):
    ok = _submit(db, clinic, manager, MAPPING, [])
    with pytest.raises(JobNotFound):
        get_error_report(db, ok.id, clinic.id)

    bad = _submit(db, clinic, manager, {"Kind": "species"}, [])
    Path(bad.error_report_path).unlink()
    path = get_error_report(db, bad.id, clinic.id)
    assert path.exists()


def test_preview(xlsx_file):
    out = preview_file(xlsx_file(make_rows(8), header=["Patient Name", "Species", "Breed", "Sex", "Age", "Diagnosis Date", "Tumour"]))
    assert out["total_rows"] == 8
    assert len(out["sample"]) == 5
    assert out["sample"][0]["Diagnosis Date"].startswith("2024-01-01")
    assert out["suggested_mapping"]["Diagnosis Date"] == "diagnosisDate"
    assert out["suggested_mapping"]["Tumour"] is None
