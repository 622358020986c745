import datetime as dt
import re
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from conftest import MAPPING, make_rows
from app.core.config import settings
from app.crud import import_jobs as ledger
from app.crud.cases import create_case
from app.db.models.case import CaseRecord, CaseStatus
from app.db.models.import_job import ImportStatus
from app.schemas.cases import CaseCreate
from app.services.imports import importer
from app.services.imports.errors import InvalidTransition, SourceError
from app.services.imports.importer import run_import_job
from app.worker.tasks import execute_import


@pytest.fixture
def new_job(db, clinic, manager):
    def _new(path: Path, mapping: dict | None = None):
        return ledger.create_import_job(db, clinic.id, manager.id, path.name, str(path), mapping or MAPPING)
    return _new


def _cases(db):
    return db.query(CaseRecord).order_by(CaseRecord.id).all()


def test_five_rows_with_one_bad_date(db, xlsx_file, new_job):
    job = new_job(xlsx_file(make_rows(5, bad_date_at=3)))
    outcome = run_import_job(db, job)

    job = ledger.get_import_job(db, job.id)
    assert outcome.completed
    assert job.status == ImportStatus.completed.value
    assert (job.total_rows, job.processed_rows, job.success_rows, job.error_rows) == (5, 5, 4, 1)
    assert job.completed_at is not None

    [err] = ledger.list_import_job_errors(db, job.id)
    assert err.row_index == 3
    assert err.column == "Diagnosed"
    assert Path(job.error_report_path).exists()

    cases = _cases(db)
    assert len(cases) == 4
    assert all(c.status == CaseStatus.active.value and c.import_job_id == job.id for c in cases)
    assert all(re.fullmatch(r"VC-\d{4}-\d{5}", c.case_number) for c in cases)
    assert len({c.case_number for c in cases}) == 4


def test_empty_sheet_completes_with_zero_rows(db, xlsx_file, new_job):
    job = new_job(xlsx_file([]))
    run_import_job(db, job)

    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.completed.value
    assert (job.total_rows, job.processed_rows, job.success_rows, job.error_rows) == (0, 0, 0, 0)
    assert job.error_report_path is None


def test_job_runs_only_once(db, xlsx_file, new_job):
    job = new_job(xlsx_file(make_rows(1)))
    run_import_job(db, job)
    with pytest.raises(InvalidTransition):
        run_import_job(db, job)
    assert execute_import(db, job.id) is None
    assert len(_cases(db)) == 1


def test_missing_job_is_ignored_by_worker(db):
    assert execute_import(db, 999) is None


def test_mapping_to_absent_column_fails_before_any_row(db, xlsx_file, new_job):
    mapping = dict(MAPPING)
    mapping["Histology"] = "stage"
    job = new_job(xlsx_file(make_rows(3)), mapping)
    assert run_import_job(db, job) is None

    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason == "Column mapping is invalid"
    assert job.processed_rows == 0
    assert Path(job.error_report_path).exists()
    assert _cases(db) == []
    assert ledger.list_import_job_errors(db, job.id)[0].row_index is None


def test_unreadable_file_fails_the_job(db, tmp_path, new_job):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"garbage")
    job = new_job(path)
    run_import_job(db, job)

    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason.startswith("Cannot read workbook")


def test_missing_file_fails_the_job(db, tmp_path, new_job):
    job = new_job(tmp_path / "gone.xlsx")
    run_import_job(db, job)
    assert ledger.get_import_job(db, job.id).failure_reason == "File not found: gone.xlsx"


def test_cancel_during_processing(db, session_factory, xlsx_file, new_job, monkeypatch):
    job = new_job(xlsx_file(make_rows(6)))
    real = importer.create_case

    def create_then_cancel(*args, **kwargs):
        case = real(*args, **kwargs)
        if case.case_number.endswith("00002"):
            other = session_factory()
            try:
                ledger.request_cancel(other, job.id)
            finally:
                other.close()
        return case

    monkeypatch.setattr(importer, "create_case", create_then_cancel)
    outcome = run_import_job(db, job)

    assert outcome.cancelled
    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason == "Cancelled"
    assert (job.processed_rows, job.success_rows) == (2, 2)
    assert len(_cases(db)) == 2


def test_repeated_database_failure_aborts_the_job(db, xlsx_file, new_job, monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_CIRCUIT_BREAK_THRESHOLD", 3)

    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO case_record", {}, Exception("database is locked"))

    monkeypatch.setattr(importer, "create_case", broken)
    job = new_job(xlsx_file(make_rows(10)))
    outcome = run_import_job(db, job)

    assert outcome.aborted_reason
    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert "database is locked" in job.failure_reason
    assert (job.processed_rows, job.error_rows) == (3, 3)
    assert len(ledger.list_import_job_errors(db, job.id)) == 3
    assert Path(job.error_report_path).exists()


def test_probable_duplicate_is_not_imported(db, clinic, manager, xlsx_file, new_job):
    existing = create_case(
        db, clinic.id, manager.id,
        CaseCreate(patient_name="PET 2", species="canine", breed="Boxer", diagnosis_date=dt.date(2024, 1, 2)),
    )
    job = new_job(xlsx_file(make_rows(3)))
    run_import_job(db, job)

    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.completed.value
    assert (job.success_rows, job.error_rows) == (2, 1)
    [err] = ledger.list_import_job_errors(db, job.id)
    assert err.row_index == 2
    assert existing.case_number in err.message


def test_worker_crash_marks_job_failed(db, session_factory, xlsx_file, new_job, monkeypatch):
    from app.worker import tasks

    def explode(db, import_job_id):
        raise RuntimeError("worker fell over")

    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(tasks, "execute_import", explode)
    job = new_job(xlsx_file(make_rows(1)))

    with pytest.raises(RuntimeError):
        tasks.run_import_task(job.id)

    db.expire_all()
    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason == "Internal error while importing"


def test_worker_task_runs_an_import(db, session_factory, xlsx_file, new_job, monkeypatch):
    from app.worker import tasks

    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    job = new_job(xlsx_file(make_rows(3, bad_date_at=1)))
    assert tasks.run_import_task(job.id) == {"processed": 3, "success": 2, "errors": 1}


def test_worker_reports_missing_file_without_raising(db, session_factory, tmp_path, new_job, monkeypatch):
    from app.worker import tasks

    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    job = new_job(tmp_path / "gone.xlsx")

    assert tasks.run_import_task(job.id) is None

    db.expire_all()
    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason == "File not found: gone.xlsx"


class _BreaksAfter:
    """Row source whose file turns unreadable after ``good`` rows."""

    def __init__(self, rows, good):
        self.headers = list(MAPPING)
        self._rows = rows
        self._good = good

    def count(self):
        return len(self._rows)

    def iter_rows(self, offset=0):
        for i, values in enumerate(self._rows, start=1):
            if i > self._good:
                raise SourceError("Cannot read CSV: unexpected end of data")
            yield i, dict(zip(self.headers, values))


def test_file_breaking_half_way_keeps_partial_counts_and_errors(db, new_job, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_PROGRESS_EVERY", 50)
    monkeypatch.setattr(importer, "open_row_source", lambda path: _BreaksAfter(make_rows(6, bad_date_at=2), good=3))
    path = tmp_path / "cases.csv"
    path.write_text("placeholder")
    job = new_job(path)

    outcome = run_import_job(db, job)

    assert outcome.aborted_reason.startswith("Cannot read CSV")
    job = ledger.get_import_job(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason.startswith("Cannot read CSV")
    assert (job.processed_rows, job.success_rows, job.error_rows) == (3, 2, 1)
    assert [e.row_index for e in ledger.list_import_job_errors(db, job.id)] == [2]
    assert Path(job.error_report_path).exists()
