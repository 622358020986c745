from pathlib import Path
from collections.abc import Iterable

import pandas as pd

from app.core.config import settings

REPORT_COLUMNS = ["row", "column", "message"]


def error_report_path(import_job_id: int) -> Path:
    return Path(settings.EXPORT_DIR) / f"import_{import_job_id}_errors.xlsx"


def export_error_report(import_job_id: int, errors: Iterable, out_path: Path | None = None) -> Path:
    """Write every failed row (row index, source column, message) to an xlsx sheet.

    ``errors`` may be RowError dataclasses or ImportJobError rows; both carry
    ``row_index``, ``column`` and ``message``.
    """
    out_path = out_path or error_report_path(import_job_id)
    rows = [
        {"row": e.row_index, "column": e.column, "message": e.message}
        for e in errors
    ]
    df = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    df["row"] = df["row"].astype("Int64")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(out_path, engine="xlsxwriter") as w:
        df.to_excel(w, index=False, sheet_name="errors")
        ws = w.sheets["errors"]
        ws.set_column(0, 0, 8)
        ws.set_column(1, 1, 24)
        ws.set_column(2, 2, 100)
    return out_path
