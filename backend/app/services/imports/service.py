from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from app.core.logging import logger
from app.crud import import_jobs as ledger
from app.db.models.import_job import ImportJob, ImportStatus
from app.services.imports.errors import MappingError
from app.services.imports.importer import mapping_errors
from app.services.imports.mapping import resolve_mapping, suggest_mapping
from app.services.imports.report import export_error_report
from app.services.imports.sources import open_row_source

PREVIEW_ROWS = 5


class JobNotFound(LookupError):
    pass


def submit_import_job(
    db: Session,
    clinic_id: int,
    user_id: int,
    filename: str,
    file_path: str,
    mapping: dict[str, str | None],
    enqueue: Callable[[int], Any],
    headers: Iterable[str] | None = None,
    file_hash: str | None = None,
) -> ImportJob:
    """
    Register an uploaded file as a PENDING job and hand it to the worker.

    The mapping is checked first: if it is incomplete the job is failed on
    the spot with every problem recorded, and nothing is enqueued.
    """
    job = ledger.create_import_job(db, clinic_id, user_id, filename, file_path, mapping, file_hash=file_hash)
    try:
        resolve_mapping(mapping, headers=headers)
    except MappingError as e:
        ledger.add_import_job_errors(db, job.id, mapping_errors(e))
        report = export_error_report(job.id, ledger.list_import_job_errors(db, job.id))
        job = ledger.finalize(
            db,
            job.id,
            ImportStatus.failed,
            error_report_path=str(report),
            failure_reason="Column mapping is invalid",
        )
        logger.info("import_job_rejected", import_job_id=job.id, missing=e.missing_fields)
        return job

    enqueue(job.id)
    logger.info("import_job_enqueued", import_job_id=job.id)
    return job


def get_job_status(db: Session, import_job_id: int, clinic_id: int) -> ImportJob:
    job = ledger.get_import_job(db, import_job_id)
    # other clinics' jobs are indistinguishable from missing ones
    if job is None or job.clinic_id != clinic_id:
        raise JobNotFound(f"Import job {import_job_id} not found")
    return job


def cancel_job(db: Session, import_job_id: int, clinic_id: int) -> ImportJob:
    get_job_status(db, import_job_id, clinic_id)
    return ledger.request_cancel(db, import_job_id)


def get_error_report(db: Session, import_job_id: int, clinic_id: int) -> Path:
    job = get_job_status(db, import_job_id, clinic_id)
    if job.error_report_path and Path(job.error_report_path).exists():
        return Path(job.error_report_path)
    errors = ledger.list_import_job_errors(db, import_job_id)
    if not errors:
        raise JobNotFound(f"Import job {import_job_id} has no errors to report")
    path = export_error_report(import_job_id, errors)
    if ImportStatus(job.status).is_terminal:
        ledger.set_error_report(db, import_job_id, str(path))
    return path


def preview_file(path: str | Path) -> dict:
    """Headers, row count, a few sample rows and a guessed mapping for the wizard."""
    source = open_row_source(path)
    sample = []
    for _, row in source.iter_rows():
        sample.append({k: _jsonable(v) for k, v in row.items()})
        if len(sample) >= PREVIEW_ROWS:
            break
    return {
        "headers": source.headers,
        "total_rows": source.count(),
        "sample": sample,
        "suggested_mapping": suggest_mapping(source.headers),
    }


def _jsonable(v: Any) -> Any:
    if v is None or isinstance(v, (str, int, bool)):
        return v
    if isinstance(v, float):
        return None if v != v else v
    if hasattr(v, "isoformat"):
        return v.isoformat()
    return str(v)
