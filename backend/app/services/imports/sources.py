from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol
from zipfile import BadZipFile

import openpyxl
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from app.services.imports.errors import SourceError
from app.services.imports.utils import is_blank, norm_str

Row = tuple[int, dict[str, Any]]


class RowSource(Protocol):
    """Lazy, finite, restartable sequence of raw rows from one uploaded file.

    ``row_index`` is 1-based over data rows (the header row is not counted),
    so it lines up with what a user sees below the header in their sheet.
    """

    headers: list[str]

    def count(self) -> int: ...

    def iter_rows(self, offset: int = 0) -> Iterator[Row]: ...


def _headers_from(values: list[Any]) -> list[str]:
    headers = []
    for i, v in enumerate(values, start=1):
        h = norm_str(v)
        headers.append(h if h is not None else f"column_{i}")
    return headers


@contextmanager
def _open_sheet(path: str, sheet: str | None):
    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, OSError, KeyError, ValueError) as e:
        raise SourceError(f"Cannot read workbook: {e}") from e
    try:
        if sheet is not None and sheet not in wb.sheetnames:
            raise SourceError(f"Sheet '{sheet}' not found")
        ws = wb[sheet] if sheet is not None else wb.worksheets[0]
        yield ws.iter_rows(values_only=True)
    finally:
        wb.close()


class XlsxRowSource:
    def __init__(self, path: str | Path, sheet: str | None = None):
        self.path = str(path)
        self.sheet = sheet
        with _open_sheet(self.path, sheet) as rows:
            first = next(rows, None)
            if first is None:
                raise SourceError("The workbook is empty")
            self.headers = _headers_from(list(first))
            self._last_data_row = 0
            for i, values in enumerate(rows, start=1):
                if any(not is_blank(v) for v in values):
                    self._last_data_row = i

    def count(self) -> int:
        # trailing empty rows are formatting leftovers, not data
        return self._last_data_row

    def iter_rows(self, offset: int = 0) -> Iterator[Row]:
        with _open_sheet(self.path, self.sheet) as rows:
            next(rows, None)
            for i, values in enumerate(rows, start=1):
                if i > self._last_data_row:
                    break
                if i <= offset:
                    continue
                yield i, dict(zip(self.headers, values))


class CsvRowSource:
    def __init__(self, path: str | Path, chunksize: int = 1000):
        self.path = str(path)
        self.chunksize = chunksize
        try:
            head = pd.read_csv(self.path, nrows=0, encoding="utf-8-sig")
        except pd.errors.EmptyDataError as e:
            raise SourceError("The file is empty") from e
        except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
            raise SourceError(f"Cannot read CSV: {e}") from e
        self.headers = _headers_from(list(head.columns))
        self._count: int | None = None

    def _chunks(self):
        try:
            yield from pd.read_csv(
                self.path,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8-sig",
                chunksize=self.chunksize,
            )
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise SourceError(f"Cannot read CSV: {e}") from e

    def _raw_rows(self) -> Iterator[list[Any]]:
        for chunk in self._chunks():
            for values in chunk.itertuples(index=False, name=None):
                yield list(values)

    def count(self) -> int:
        if self._count is None:
            last = 0
            for i, values in enumerate(self._raw_rows(), start=1):
                if any(not is_blank(v) for v in values):
                    last = i
            self._count = last
        return self._count

    def iter_rows(self, offset: int = 0) -> Iterator[Row]:
        total = self.count()
        for i, values in enumerate(self._raw_rows(), start=1):
            if i > total:
                break
            if i <= offset:
                continue
            yield i, dict(zip(self.headers, values))


def open_row_source(path: str | Path, sheet: str | None = None) -> RowSource:
    suffix = Path(path).suffix.lower()
    if suffix == ".xlsx":
        return XlsxRowSource(path, sheet=sheet)
    if suffix == ".csv":
        return CsvRowSource(path)
    raise SourceError(f"Unsupported file type '{suffix or Path(path).name}'")
