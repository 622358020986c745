from __future__ import annotations

from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import logger
from app.crud import import_jobs as ledger
from app.crud.cases import create_case, find_similar_case
from app.db.models.case import CaseStatus
from app.db.models.import_job import ImportJob, ImportStatus
from app.schemas.cases import CaseCreate
from app.services.imports.errors import MappingError, PersistenceError, SourceError
from app.services.imports.fields import CaseField
from app.services.imports.mapping import resolve_mapping
from app.services.imports.processor import ImportOutcome, Progress, RowProcessor
from app.services.imports.report import export_error_report
from app.services.imports.sources import open_row_source
from app.services.imports.validators import RowError


def _db_message(e: SQLAlchemyError) -> str:
    orig = getattr(e, "orig", None)
    text = str(orig if orig is not None else e).strip()
    return text.splitlines()[0][:500] if text else e.__class__.__name__


def duplicate_fields() -> tuple[CaseField, ...]:
    out = []
    for name in settings.duplicate_fields:
        f = CaseField.parse(name)
        if f is None:
            raise ValueError(f"IMPORT_DUPLICATE_FIELDS: unknown field '{name}'")
        out.append(f)
    return tuple(out)


def _case_writer(db: Session, job: ImportJob):
    clinic_id, user_id, job_id = job.clinic_id, job.created_by, job.id

    def _create(case: CaseCreate):
        # one transaction per row: a failure here never touches rows already saved
        try:
            return create_case(db, clinic_id, user_id, case, import_job_id=job_id, status=CaseStatus.active).id
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(_db_message(e)) from e

    def _find(signature):
        try:
            c = find_similar_case(db, clinic_id, signature)
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(_db_message(e)) from e
        return c.case_number if c is not None else None

    return _create, _find


def _fail_job(
    db: Session,
    job: ImportJob,
    reason: str,
    errors: list[RowError] | None = None,
    counts: tuple[int, int, int] | None = None,
) -> ImportJob:
    if errors:
        ledger.add_import_job_errors(db, job.id, errors)
    report = None
    stored = ledger.list_import_job_errors(db, job.id)
    if stored:
        report = str(export_error_report(job.id, stored))
    job = ledger.finalize(
        db, job.id, ImportStatus.failed, error_report_path=report, failure_reason=reason, counts=counts
    )
    logger.warning("import_job_failed", import_job_id=job.id, reason=reason)
    return job


def mapping_errors(e: MappingError) -> list[RowError]:
    return [RowError(row_index=None, message=p.message, column=p.field) for p in e.problems]


def run_import_job(db: Session, job: ImportJob) -> ImportOutcome | None:
    """
    Worker body for one job: claim it, read the file, push every row through
    the RowProcessor and close the job. Raises InvalidTransition when the job
    is no longer PENDING; returns None when it failed before the first row
    (unreadable file, bad mapping).
    """
    job = ledger.claim_import_job(db, job.id)
    log = logger.bind(import_job_id=job.id, clinic_id=job.clinic_id)
    log.info("import_job_start", path=job.file_path)

    path = Path(job.file_path)
    if not path.exists():
        _fail_job(db, job, f"File not found: {path.name}")
        return None
    try:
        source = open_row_source(path)
        resolved = resolve_mapping(job.mapping or {}, headers=source.headers)
        total = source.count()
    except SourceError as e:
        _fail_job(db, job, str(e))
        return None
    except MappingError as e:
        _fail_job(db, job, "Column mapping is invalid", mapping_errors(e))
        return None

    ledger.set_total_rows(db, job.id, total)
    log.info("import_job_rows", total_rows=total)

    create, find = _case_writer(db, job)

    def _progress(p: Progress) -> bool:
        return ledger.record_progress(db, job.id, p.processed, p.success, p.error, p.new_errors)

    processor = RowProcessor(
        resolved,
        create_case=create,
        find_similar_case=find,
        on_progress=_progress,
        is_cancelled=lambda: ledger.is_cancel_requested(db, job.id),
        duplicate_fields=duplicate_fields(),
        progress_every=settings.IMPORT_PROGRESS_EVERY,
        circuit_break_threshold=settings.IMPORT_CIRCUIT_BREAK_THRESHOLD,
    )
    # a file that breaks half way comes back as an aborted outcome with partial counts
    outcome = processor.run(source.iter_rows())

    _store_missing_errors(db, job.id, outcome)
    counts = (outcome.processed, outcome.success, outcome.error)

    report = None
    if outcome.errors:
        report = str(export_error_report(job.id, ledger.list_import_job_errors(db, job.id)))

    if outcome.completed:
        ledger.finalize(db, job.id, ImportStatus.completed, error_report_path=report, counts=counts)
    else:
        reason = "Cancelled" if outcome.cancelled else outcome.aborted_reason
        ledger.finalize(
            db, job.id, ImportStatus.failed, error_report_path=report, failure_reason=reason, counts=counts
        )

    log.info(
        "import_job_finished",
        completed=outcome.completed,
        processed=outcome.processed,
        success=outcome.success,
        errors=outcome.error,
    )
    return outcome


def _store_missing_errors(db: Session, import_job_id: int, outcome: ImportOutcome) -> None:
    # row errors whose progress flush lost every version race
    stored = [e for e in ledger.list_import_job_errors(db, import_job_id) if e.row_index is not None]
    if len(stored) < len(outcome.errors):
        ledger.add_import_job_errors(db, import_job_id, outcome.errors[len(stored):])
