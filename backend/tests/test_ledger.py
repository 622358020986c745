import pytest

from app.crud import import_jobs as ledger
from app.db.models.import_job import ImportStatus
from app.services.imports.errors import InvalidTransition
from app.services.imports.validators import RowError


@pytest.fixture
def job(db, clinic, manager):
    return ledger.create_import_job(db, clinic.id, manager.id, "cases.xlsx", "/tmp/cases.xlsx", {"Kind": "species"})


def test_new_job_is_pending(job):
    assert job.status == ImportStatus.pending.value
    assert (job.processed_rows, job.success_rows, job.error_rows) == (0, 0, 0)
    assert job.version == 1


def test_claim_moves_to_processing_once(db, job):
    claimed = ledger.claim_import_job(db, job.id, total_rows=10)
    assert claimed.status == ImportStatus.processing.value
    assert claimed.total_rows == 10
    assert claimed.started_at is not None
    with pytest.raises(InvalidTransition):
        ledger.claim_import_job(db, job.id)


def test_two_workers_racing_for_a_job(session_factory, job):
    a, b = session_factory(), session_factory()
    try:
        ledger.get_import_job(a, job.id)
        ledger.get_import_job(b, job.id)
        results = []
        for s in (a, b):
            try:
                ledger.claim_import_job(s, job.id)
                results.append("won")
            except InvalidTransition:
                results.append("lost")
        assert sorted(results) == ["lost", "won"]
    finally:
        a.close()
        b.close()


def test_stale_version_is_rejected(db, job):
    assert not ledger._compare_and_set(db, job.id, job.version + 5, job.status, {"total_rows": 3})
    db.rollback()
    assert ledger._compare_and_set(db, job.id, job.version, job.status, {"total_rows": 3})
    db.commit()
    assert ledger.get_import_job(db, job.id).version == 2


@pytest.mark.parametrize("target", [ImportStatus.completed, ImportStatus.pending])
def test_pending_cannot_skip_processing(db, job, target):
    with pytest.raises(InvalidTransition):
        ledger.transition_to(db, job.id, target)


def test_progress_is_monotonic_and_idempotent(db, job):
    ledger.claim_import_job(db, job.id, total_rows=5)
    errs = [RowError(row_index=2, message="breed: is required", column="Breed")]

    assert ledger.record_progress(db, job.id, 2, 1, 1, errs)
    assert not ledger.record_progress(db, job.id, 2, 1, 1, errs)
    assert not ledger.record_progress(db, job.id, 1, 1, 0)

    job = ledger.get_import_job(db, job.id)
    assert (job.processed_rows, job.success_rows, job.error_rows) == (2, 1, 1)
    assert [e.row_index for e in ledger.list_import_job_errors(db, job.id)] == [2]


def test_progress_rejects_inconsistent_counters(db, job):
    ledger.claim_import_job(db, job.id, total_rows=3)
    with pytest.raises(ValueError):
        ledger.record_progress(db, job.id, 2, 2, 1)
    with pytest.raises(ValueError):
        ledger.record_progress(db, job.id, 4, 4, 0)


def test_progress_ignored_outside_processing(db, job):
    assert not ledger.record_progress(db, job.id, 1, 1, 0)


def test_progress_survives_a_concurrent_cancel_request(session_factory, db, job):
    ledger.claim_import_job(db, job.id, total_rows=5)
    other = session_factory()
    try:
        ledger.request_cancel(other, job.id)
    finally:
        other.close()
    assert ledger.record_progress(db, job.id, 1, 1, 0)
    assert ledger.is_cancel_requested(db, job.id)


def test_finalize_is_terminal(db, job):
    ledger.claim_import_job(db, job.id)
    done = ledger.finalize(db, job.id, ImportStatus.completed)
    assert done.completed_at is not None
    version = done.version

    again = ledger.finalize(db, job.id, ImportStatus.completed)
    assert again.version == version

    with pytest.raises(InvalidTransition):
        ledger.finalize(db, job.id, ImportStatus.failed)
    with pytest.raises(InvalidTransition):
        ledger.transition_to(db, job.id, ImportStatus.processing)
    with pytest.raises(InvalidTransition):
        ledger.finalize(db, job.id, ImportStatus.processing)


def test_cancel_pending_fails_immediately(db, job):
    job = ledger.request_cancel(db, job.id)
    assert job.status == ImportStatus.failed.value
    assert job.failure_reason == "Cancelled before start"


def test_cancel_processing_sets_flag(db, job):
    ledger.claim_import_job(db, job.id)
    job = ledger.request_cancel(db, job.id)
    assert job.status == ImportStatus.processing.value
    assert job.cancel_requested
    assert ledger.is_cancel_requested(db, job.id)


def test_cancel_finished_job_is_a_noop(db, job):
    ledger.claim_import_job(db, job.id)
    ledger.finalize(db, job.id, ImportStatus.completed)
    job = ledger.request_cancel(db, job.id)
    assert job.status == ImportStatus.completed.value
    assert not job.cancel_requested


def test_finalize_writes_closing_counters(db, job):
    ledger.claim_import_job(db, job.id, total_rows=4)
    ledger.record_progress(db, job.id, 2, 2, 0)
    with pytest.raises(ValueError):
        ledger.finalize(db, job.id, ImportStatus.completed, counts=(1, 1, 0))
    done = ledger.finalize(db, job.id, ImportStatus.completed, counts=(4, 3, 1))
    assert (done.processed_rows, done.success_rows, done.error_rows) == (4, 3, 1)


def test_cancel_gives_up_after_losing_every_race(db, job, monkeypatch):
    ledger.claim_import_job(db, job.id)
    calls = []

    def always_stale(*args, **kwargs):
        calls.append(args)
        return False

    monkeypatch.setattr(ledger, "_compare_and_set", always_stale)
    with pytest.raises(InvalidTransition):
        ledger.request_cancel(db, job.id)
    assert len(calls) == ledger._CAS_ATTEMPTS
    assert not ledger.is_cancel_requested(db, job.id)
