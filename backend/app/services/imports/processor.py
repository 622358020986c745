from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from app.core.logging import logger
from app.schemas.cases import CaseCreate
from app.services.imports.errors import (
    FieldProblem,
    ImportAborted,
    PersistenceError,
    RowValidationError,
    SourceError,
)
from app.services.imports.fields import CaseField
from app.services.imports.mapping import ResolvedMapping
from app.services.imports.sources import Row
from app.services.imports.validators import CaseRecordDraft, RowError, validate_draft

CaseSignature = dict[CaseField, Any]

# create_case(case) -> new case id, raises PersistenceError
CreateCase = Callable[[CaseCreate], Any]
# find_similar_case(signature) -> existing case number/id or None
FindSimilarCase = Callable[[CaseSignature], Any]


@dataclass
class Progress:
    processed: int
    success: int
    error: int
    new_errors: list[RowError]


@dataclass
class ImportOutcome:
    processed: int = 0
    success: int = 0
    error: int = 0
    errors: list[RowError] = field(default_factory=list)
    cancelled: bool = False
    aborted_reason: str | None = None

    @property
    def completed(self) -> bool:
        return not self.cancelled and self.aborted_reason is None


def case_signature(case: CaseCreate, fields: Iterable[CaseField]) -> CaseSignature | None:
    """Values identifying a probable duplicate. None when any part is empty."""
    sig: CaseSignature = {}
    data = case.model_dump(by_alias=True)
    for f in fields:
        v = data.get(f.value)
        if v is None or v == "":
            return None
        sig[f] = v.strip().lower() if isinstance(v, str) else v
    return sig


class RowProcessor:
    """
    Turns raw rows into case records, one row at a time.

    Each row is projected through the resolved mapping, validated against the
    case schema, checked for a probable duplicate and then handed to
    ``create_case``. Any failure of a single row is recorded against its row
    index and processing continues with the next row. Progress is pushed
    through ``on_progress`` every ``progress_every`` rows and once at the end.

    ``is_cancelled`` is polled between rows. ``circuit_break_threshold``
    consecutive persistence failures with the same message abort the run
    (0 disables the breaker), and so does a row source that stops being
    readable part way through.
    """

    def __init__(
        self,
        mapping: ResolvedMapping,
        create_case: CreateCase,
        find_similar_case: FindSimilarCase | None = None,
        on_progress: Callable[[Progress], bool | None] | None = None,
        is_cancelled: Callable[[], bool] | None = None,
        duplicate_fields: Iterable[CaseField] = (),
        progress_every: int = 50,
        circuit_break_threshold: int = 25,
    ):
        self.mapping = mapping
        self.create_case = create_case
        self.find_similar_case = find_similar_case
        self.on_progress = on_progress
        self.is_cancelled = is_cancelled or (lambda: False)
        self.duplicate_fields = tuple(duplicate_fields)
        self.progress_every = max(1, progress_every)
        self.circuit_break_threshold = circuit_break_threshold

        self._outcome = ImportOutcome()
        self._pending: list[RowError] = []
        self._last_failure: str | None = None
        self._same_failures = 0

    def run(self, rows: Iterable[Row]) -> ImportOutcome:
        out = self._outcome
        try:
            for row_index, raw in rows:
                if self.is_cancelled():
                    out.cancelled = True
                    logger.info("import_rows_cancelled", processed=out.processed)
                    break
                self._process_row(row_index, raw)
                if out.processed % self.progress_every == 0:
                    self._flush()
        except ImportAborted as e:
            out.aborted_reason = e.reason
            logger.warning("import_rows_aborted", processed=out.processed, reason=e.reason)
        except SourceError as e:
            out.aborted_reason = str(e)
            logger.warning("import_rows_source_failed", processed=out.processed, error=str(e))
        self._flush()
        return out

    def _process_row(self, row_index: int, raw: dict[str, Any]) -> None:
        draft = CaseRecordDraft(row_index=row_index, values=self.mapping.project(raw))
        try:
            case = validate_draft(draft)
        except RowValidationError as e:
            self._fail(row_index, str(e), self._column_for(e.column))
            self._reset_breaker()
            return

        try:
            self._check_duplicate(row_index, case)
            self.create_case(case)
        except RowValidationError as e:
            self._fail(row_index, str(e))
            self._reset_breaker()
            return
        except PersistenceError as e:
            msg = str(e) or "Could not save case"
            self._fail(row_index, msg)
            self._trip_breaker(msg)
            return

        self._reset_breaker()
        self._outcome.processed += 1
        self._outcome.success += 1

    def _check_duplicate(self, row_index: int, case: CaseCreate) -> None:
        if self.find_similar_case is None or not self.duplicate_fields:
            return
        sig = case_signature(case, self.duplicate_fields)
        if sig is None:
            return
        existing = self.find_similar_case(sig)
        if existing is not None:
            described = ", ".join(
                f"{f.value}={v.isoformat() if isinstance(v, dt.date) else v}" for f, v in sig.items()
            )
            raise RowValidationError(
                row_index,
                [FieldProblem(None, f"Possible duplicate of existing case {existing} ({described})")],
            )

    def _column_for(self, field_name: str | None) -> str | None:
        if not field_name:
            return None
        f = CaseField.parse(field_name)
        return self.mapping.header_for(f) if f is not None else field_name

    def _fail(self, row_index: int, message: str, column: str | None = None) -> None:
        err = RowError(row_index=row_index, message=message, column=column)
        self._outcome.errors.append(err)
        self._pending.append(err)
        self._outcome.processed += 1
        self._outcome.error += 1

    def _reset_breaker(self) -> None:
        self._last_failure = None
        self._same_failures = 0

    def _trip_breaker(self, message: str) -> None:
        if message == self._last_failure:
            self._same_failures += 1
        else:
            self._last_failure = message
            self._same_failures = 1
        if self.circuit_break_threshold and self._same_failures >= self.circuit_break_threshold:
            raise ImportAborted(
                f"Stopped after {self._same_failures} consecutive rows failed with: {message}"
            )

    def _flush(self) -> None:
        if self.on_progress is None:
            self._pending = []
            return
        out = self._outcome
        # unpublished errors ride along with the next flush
        if self.on_progress(Progress(out.processed, out.success, out.error, list(self._pending))) is not False:
            self._pending = []
