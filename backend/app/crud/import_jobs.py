import datetime as dt
from collections.abc import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.logging import logger
from app.db.models.import_job import ImportJob, ImportStatus
from app.db.models.import_job_error import ImportJobError
from app.services.imports.errors import InvalidTransition
from app.services.imports.validators import RowError

# forward-only lifecycle; COMPLETED and FAILED have no way out
ALLOWED_TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    ImportStatus.pending: frozenset({ImportStatus.processing, ImportStatus.failed}),
    ImportStatus.processing: frozenset({ImportStatus.completed, ImportStatus.failed}),
    ImportStatus.completed: frozenset(),
    ImportStatus.failed: frozenset(),
}

_CAS_ATTEMPTS = 3


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def get_import_job(db: Session, import_job_id: int) -> ImportJob | None:
    return db.query(ImportJob).filter(ImportJob.id == import_job_id).one_or_none()


def _require(db: Session, import_job_id: int) -> ImportJob:
    job = get_import_job(db, import_job_id)
    if job is None:
        raise LookupError(f"Import job {import_job_id} not found")
    # always look at what is committed, not at a copy cached in this session
    db.refresh(job)
    return job


def list_import_jobs(db: Session, clinic_id: int, limit: int = 100):
    return (
        db.query(ImportJob)
        .filter(ImportJob.clinic_id == clinic_id)
        .order_by(ImportJob.created_at.desc(), ImportJob.id.desc())
        .limit(limit)
        .all()
    )


def list_import_job_errors(db: Session, import_job_id: int):
    return (
        db.query(ImportJobError)
        .filter(ImportJobError.import_job_id == import_job_id)
        .order_by(ImportJobError.id)
        .all()
    )


def add_import_job_errors(db: Session, import_job_id: int, errors: Iterable[RowError], commit: bool = True) -> None:
    for er in errors:
        db.add(ImportJobError(
            import_job_id=import_job_id,
            row_index=er.row_index,
            column=er.column,
            message=er.message,
        ))
    if commit:
        db.commit()


def create_import_job(
    db: Session,
    clinic_id: int,
    created_by: int,
    filename: str,
    file_path: str,
    mapping: dict,
    file_hash: str | None = None,
) -> ImportJob:
    job = ImportJob(
        clinic_id=clinic_id,
        created_by=created_by,
        filename=filename,
        file_path=file_path,
        file_hash=file_hash,
        mapping=dict(mapping),
        status=ImportStatus.pending.value,
        processed_rows=0,
        success_rows=0,
        error_rows=0,
        version=1,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("import_job_created", import_job_id=job.id, clinic_id=clinic_id, filename=filename)
    return job


def _compare_and_set(db: Session, import_job_id: int, version: int, status: str, values: dict) -> bool:
    """Single guarded UPDATE. False when someone else wrote the row first."""
    res = db.execute(
        update(ImportJob)
        .where(
            ImportJob.id == import_job_id,
            ImportJob.version == version,
            ImportJob.status == status,
        )
        .values(version=version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def transition_to(db: Session, import_job_id: int, status: ImportStatus | str, **fields) -> ImportJob:
    """
    Move a job along its lifecycle. Raises InvalidTransition for an edge the
    state machine does not have, or when a concurrent writer got there first;
    in both cases nothing is written.
    """
    target = ImportStatus(status)
    job = _require(db, import_job_id)
    current = ImportStatus(job.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(import_job_id, current.value, target.value)

    values = dict(fields)
    values["status"] = target.value
    if target == ImportStatus.processing:
        values.setdefault("started_at", _now())
    if target.is_terminal:
        values.setdefault("completed_at", _now())

    if not _compare_and_set(db, import_job_id, job.version, current.value, values):
        db.rollback()
        latest = _require(db, import_job_id)
        raise InvalidTransition(import_job_id, latest.status, target.value)
    db.commit()
    db.refresh(job)
    logger.info("import_job_transition", import_job_id=import_job_id, from_status=current.value, to_status=target.value)
    return job


def claim_import_job(db: Session, import_job_id: int, total_rows: int | None = None) -> ImportJob:
    """PENDING -> PROCESSING. Exactly one of several racing workers wins."""
    fields = {} if total_rows is None else {"total_rows": total_rows}
    return transition_to(db, import_job_id, ImportStatus.processing, **fields)


def set_total_rows(db: Session, import_job_id: int, total_rows: int) -> bool:
    for _ in range(_CAS_ATTEMPTS):
        job = _require(db, import_job_id)
        if job.status != ImportStatus.processing.value or total_rows < job.processed_rows:
            return False
        if _compare_and_set(db, import_job_id, job.version, job.status, {"total_rows": total_rows}):
            db.commit()
            return True
        db.rollback()
    return False


def record_progress(
    db: Session,
    import_job_id: int,
    processed: int,
    success: int,
    error: int,
    errors: Iterable[RowError] = (),
) -> bool:
    """
    Publish row counters (and the row errors found since the last call).

    Safe to retry: a call that does not move ``processed`` forward, arrives
    after the job left PROCESSING, or keeps losing version races is ignored
    and returns False, so counters never go backwards.
    """
    if processed != success + error or min(processed, success, error) < 0:
        raise ValueError(f"inconsistent counters: processed={processed} success={success} error={error}")
    for _ in range(_CAS_ATTEMPTS):
        job = _require(db, import_job_id)
        if job.status != ImportStatus.processing.value or processed <= job.processed_rows:
            return False
        if job.total_rows is not None and processed > job.total_rows:
            raise ValueError(f"processed={processed} exceeds total_rows={job.total_rows}")
        values = {"processed_rows": processed, "success_rows": success, "error_rows": error}
        if _compare_and_set(db, import_job_id, job.version, job.status, values):
            break
        # another write (e.g. a cancel request) bumped the version; re-read and decide again
        db.rollback()
    else:
        logger.info("import_job_progress_stale", import_job_id=import_job_id, processed=processed)
        return False
    add_import_job_errors(db, import_job_id, errors, commit=False)
    db.commit()
    return True


def finalize(
    db: Session,
    import_job_id: int,
    status: ImportStatus | str,
    error_report_path: str | None = None,
    failure_reason: str | None = None,
    counts: tuple[int, int, int] | None = None,
) -> ImportJob:
    """
    Terminal transition. Repeating the same terminal status is a no-op.

    ``counts`` (processed, success, error) are written in the same update,
    so the closing numbers and the status land together.
    """
    target = ImportStatus(status)
    if not target.is_terminal:
        raise InvalidTransition(import_job_id, None, target.value)
    job = _require(db, import_job_id)
    if job.status == target.value:
        return job
    fields = {}
    if error_report_path is not None:
        fields["error_report_path"] = error_report_path
    if failure_reason is not None:
        fields["failure_reason"] = failure_reason
    if counts is not None:
        processed, success, error = counts
        if processed != success + error or processed < job.processed_rows:
            raise ValueError(f"bad final counters {counts} for job at processed={job.processed_rows}")
        if job.total_rows is not None and processed > job.total_rows:
            raise ValueError(f"processed={processed} exceeds total_rows={job.total_rows}")
        fields.update(processed_rows=processed, success_rows=success, error_rows=error)
    return transition_to(db, import_job_id, target, **fields)


def set_error_report(db: Session, import_job_id: int, path: str) -> ImportJob:
    job = _require(db, import_job_id)
    job.error_report_path = path
    db.commit()
    db.refresh(job)
    return job


def request_cancel(db: Session, import_job_id: int) -> ImportJob:
    """
    PENDING jobs fail straight away, PROCESSING jobs get a flag the worker
    reads between rows, finished jobs are left alone.
    Raises InvalidTransition when every attempt loses a version race.
    """
    for _ in range(_CAS_ATTEMPTS):
        job = _require(db, import_job_id)
        if job.status == ImportStatus.pending.value:
            try:
                return transition_to(db, import_job_id, ImportStatus.failed, failure_reason="Cancelled before start")
            except InvalidTransition:
                # a worker claimed it in the meantime
                continue
        if job.status != ImportStatus.processing.value or job.cancel_requested:
            return job
        if _compare_and_set(db, import_job_id, job.version, job.status, {"cancel_requested": True}):
            db.commit()
            logger.info("import_job_cancel_requested", import_job_id=import_job_id)
            return _require(db, import_job_id)
        db.rollback()
    logger.warning("import_job_cancel_stale", import_job_id=import_job_id)
    raise InvalidTransition(import_job_id, job.status, "cancel requested")


def is_cancel_requested(db: Session, import_job_id: int) -> bool:
    flag = db.query(ImportJob.cancel_requested).filter(ImportJob.id == import_job_id).scalar()
    return bool(flag)
