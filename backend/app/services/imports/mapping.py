from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from app.services.imports.errors import MappingError, MappingProblem
from app.services.imports.fields import CaseField, REQUIRED_FIELDS, TEMPLATE_COLUMNS, FIELD_LABELS
from app.services.imports.utils import norm_header

UNMAPPED = "__skip__"


@dataclass(frozen=True)
class ResolvedMapping:
    """Validated header -> field correspondence for one job."""

    columns: dict[CaseField, str]  # field -> source header (as it appears in the file)

    def project(self, raw: Mapping[str, Any]) -> dict[CaseField, Any]:
        return {f: raw.get(h) for f, h in self.columns.items()}

    def header_for(self, field: CaseField) -> str | None:
        return self.columns.get(field)

    def as_dict(self) -> dict[str, str]:
        return {h: f.value for f, h in self.columns.items()}


def resolve_mapping(
    mapping: Mapping[str, str | None],
    headers: Iterable[str] | None = None,
    required: Iterable[CaseField] = REQUIRED_FIELDS,
) -> ResolvedMapping:
    """
    Check a caller-supplied ``{source header: canonical field}`` mapping.

    All problems are collected before raising so the caller sees the complete
    list in one go: unknown target fields, a field fed by more than one
    column, headers that collide after trimming, headers missing from the
    file (only when ``headers`` is given) and required fields nobody maps.
    """
    problems: list[MappingProblem] = []
    file_headers = None
    if headers is not None:
        file_headers = {str(h).strip(): str(h) for h in headers if h is not None}

    seen_headers: dict[str, list[str]] = {}
    by_field: dict[CaseField, list[str]] = {}

    for raw_header, target in mapping.items():
        header = str(raw_header).strip()
        seen_headers.setdefault(header, []).append(str(raw_header))
        if target is None or str(target).strip() in ("", UNMAPPED):
            continue
        field = CaseField.parse(str(target).strip())
        if field is None:
            problems.append(MappingProblem(str(target), "unknown_field", (header,)))
            continue
        by_field.setdefault(field, []).append(header)

    for header, raws in seen_headers.items():
        if len(raws) > 1:
            problems.append(MappingProblem(None, "conflict", tuple(raws)))

    columns: dict[CaseField, str] = {}
    for field, hdrs in by_field.items():
        if len(hdrs) > 1:
            problems.append(MappingProblem(field.value, "conflict", tuple(hdrs)))
            continue
        header = hdrs[0]
        if file_headers is not None:
            if header not in file_headers:
                problems.append(MappingProblem(field.value, "unknown_header", (header,)))
                continue
            header = file_headers[header]
        columns[field] = header

    # stable, declaration-ordered report of missing fields
    required = set(required)
    for field in CaseField:
        if field in required and field not in by_field:
            problems.append(MappingProblem(field.value, "missing"))

    if problems:
        raise MappingError(problems)
    return ResolvedMapping(columns=columns)


def suggest_mapping(headers: Iterable[str]) -> dict[str, str | None]:
    """Best-effort guess used to prefill the mapping step of the upload wizard."""
    lookup: dict[str, CaseField] = {}
    for field in CaseField:
        lookup[norm_header(field.value)] = field
        lookup[norm_header(FIELD_LABELS[field])] = field
    for col, field in TEMPLATE_COLUMNS.items():
        lookup[norm_header(col)] = field

    out: dict[str, str | None] = {}
    taken: set[CaseField] = set()
    for h in headers:
        field = lookup.get(norm_header(h))
        if field is not None and field not in taken:
            out[h] = field.value
            taken.add(field)
        else:
            out[h] = None
    return out
