import structlog
from sqlalchemy.orm import Session

from app.worker.celery_app import celery_app
from app.core.logging import logger
from app.db.session import SessionLocal
from app.crud.import_jobs import get_import_job, finalize
from app.db.models.import_job import ImportStatus
from app.services.imports.errors import InvalidTransition
from app.services.imports.importer import run_import_job


def _mark_failed(db: Session, import_job_id: int, reason: str) -> None:
    try:
        finalize(db, import_job_id, ImportStatus.failed, failure_reason=reason)
    except InvalidTransition as e:
        logger.info("import_job_already_closed", import_job_id=import_job_id, status=e.current)


def execute_import(db: Session, import_job_id: int):
    job = get_import_job(db, import_job_id)
    if not job:
        logger.error("import_job_missing", import_job_id=import_job_id)
        return None
    try:
        return run_import_job(db, job)
    except InvalidTransition as e:
        # someone else owns (or already closed) this job
        logger.warning("import_job_not_claimed", import_job_id=import_job_id, status=e.current)
        return None


@celery_app.task(name="imports.run_import_job", bind=True)
def run_import_task(self, import_job_id: int):
    structlog.contextvars.bind_contextvars(task_id=self.request.id, import_job_id=import_job_id)
    db: Session = SessionLocal()
    try:
        outcome = execute_import(db, import_job_id)
        return None if outcome is None else {
            "processed": outcome.processed,
            "success": outcome.success,
            "errors": outcome.error,
        }

    except Exception as e:
        logger.exception("import_job_crashed", import_job_id=import_job_id, error=str(e))

        # the session may be mid-transaction after a DB error: roll back first
        try:
            db.rollback()
            _mark_failed(db, import_job_id, "Internal error while importing")
        except Exception as e2:
            logger.exception(
                "import_job_crashed_status_update_failed",
                import_job_id=import_job_id,
                error=str(e2),
            )
            # last resort: a fresh session, in case this one is unusable
            try:
                db2: Session = SessionLocal()
                try:
                    _mark_failed(db2, import_job_id, "Internal error while importing")
                finally:
                    db2.close()
            except Exception as e3:
                logger.exception(
                    "import_job_crashed_status_update_failed_second_attempt",
                    import_job_id=import_job_id,
                    error=str(e3),
                )

        raise

    finally:
        db.close()
        structlog.contextvars.clear_contextvars()
