import datetime as dt
import hashlib
import re
from typing import Any

from openpyxl.utils.datetime import from_excel

_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y")
_HEADER_RE = re.compile(r"[^a-z0-9]+")


def file_sha256(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def is_blank(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, float) and v != v:  # NaN
        return True
    return isinstance(v, str) and not v.strip()


def norm_str(v: Any) -> str | None:
    if is_blank(v):
        return None
    if isinstance(v, str):
        return v.strip()
    return str(v).strip()


def norm_header(v: Any) -> str:
    """'Diagnosis Date ' / 'diagnosis_date' / 'DiagnosisDate' -> 'diagnosisdate'"""
    return _HEADER_RE.sub("", str(v or "").lower())


def to_date(v: Any) -> dt.date | None:
    if v is None:
        return None
    if isinstance(v, dt.datetime):
        return v.date()
    if isinstance(v, dt.date):
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool) and 20000 < v < 80000:  # excel serial
        try:
            d = from_excel(v)
        except (ValueError, OverflowError):
            return None
        return d.date() if isinstance(d, dt.datetime) else d
    if isinstance(v, str):
        s = v.strip()
        if "T" in s or " " in s:
            s = s.replace("T", " ").split(" ")[0]
        for fmt in _DATE_FORMATS:
            try:
                return dt.datetime.strptime(s, fmt).date()
            except ValueError:
                pass
    return None


def to_int(v: Any) -> int | None:
    """Integers as typed in spreadsheets: 7, 7.0, '7', '7.0'. Anything else -> None."""
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v) if v.is_integer() else None
    if isinstance(v, str):
        s = v.strip().replace(",", ".")
        try:
            f = float(s)
        except ValueError:
            return None
        return int(f) if f.is_integer() else None
    return None
