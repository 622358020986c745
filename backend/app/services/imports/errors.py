"""Exceptions raised along the bulk import path.

``MappingError`` and ``SourceError`` are fatal for a job, ``RowValidationError``
and ``PersistenceError`` are per-row and only counted, ``ImportAborted`` is the
row processor giving up on a systemic fault, ``InvalidTransition`` is ledger
misuse.
"""
from dataclasses import dataclass, field


class ImportJobError(Exception):
    pass


@dataclass(frozen=True)
class MappingProblem:
    field: str | None
    kind: str  # missing|conflict|unknown_field|unknown_header
    headers: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        hdrs = ", ".join(f"'{h}'" for h in self.headers)
        if self.kind == "missing":
            return f"Required field '{self.field}' is not mapped to any column"
        if self.kind == "conflict" and self.field:
            return f"Field '{self.field}' is mapped from more than one column: {hdrs}"
        if self.kind == "conflict":
            return f"Columns {hdrs} are the same header after trimming"
        if self.kind == "unknown_field":
            return f"Column {hdrs} is mapped to unknown field '{self.field}'"
        return f"Mapped column {hdrs} is not present in the file"


class MappingError(ImportJobError):
    def __init__(self, problems: list[MappingProblem]):
        self.problems = list(problems)
        super().__init__("; ".join(p.message for p in self.problems))

    @property
    def missing_fields(self) -> list[str]:
        return [p.field for p in self.problems if p.kind == "missing" and p.field]


@dataclass
class FieldProblem:
    field: str | None
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}" if self.field else self.message


class RowValidationError(ImportJobError):
    def __init__(self, row_index: int, problems: list[FieldProblem]):
        self.row_index = row_index
        self.problems = list(problems)
        super().__init__("; ".join(str(p) for p in self.problems))

    @property
    def column(self) -> str | None:
        # only attribute a column when there is exactly one offending field
        fields = {p.field for p in self.problems if p.field}
        return fields.pop() if len(fields) == 1 else None


class PersistenceError(ImportJobError):
    pass


class SourceError(ImportJobError):
    pass


class ImportAborted(ImportJobError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidTransition(ImportJobError):
    def __init__(self, job_id: int, current: str | None, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Import job {job_id}: cannot move from {current} to {target}")
