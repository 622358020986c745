from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.schemas.cases import CaseCreate
from app.services.imports.errors import FieldProblem, RowValidationError
from app.services.imports.fields import CaseField
from app.services.imports.utils import is_blank


@dataclass
class RowError:
    row_index: int | None
    message: str
    column: str | None = None


@dataclass
class CaseRecordDraft:
    row_index: int
    values: dict[CaseField, Any]

    def is_blank(self) -> bool:
        return all(is_blank(v) for v in self.values.values())


def _problem_message(err: dict) -> str:
    kind = err.get("type", "")
    if kind == "missing" or (err.get("input") is None and kind.endswith("_type")):
        return "is required"
    if kind == "value_error":
        return str(err["ctx"]["error"]) if "ctx" in err else err["msg"]
    return err["msg"]


def validate_draft(draft: CaseRecordDraft) -> CaseCreate:
    """Run the case schema over a projected row. Raises RowValidationError."""
    if draft.is_blank():
        raise RowValidationError(draft.row_index, [FieldProblem(None, "Row is empty")])
    payload = {f.value: v for f, v in draft.values.items()}
    try:
        return CaseCreate.model_validate(payload)
    except PydanticValidationError as e:
        problems = []
        for err in e.errors(include_url=False):
            loc = err.get("loc") or ()
            field = str(loc[0]) if loc else None
            problems.append(FieldProblem(field, _problem_message(err)))
        raise RowValidationError(draft.row_index, problems) from e
