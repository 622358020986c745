import json
from pathlib import Path

from fastapi import APIRouter, Depends, UploadFile, File, Form, HTTPException
from fastapi.responses import FileResponse, PlainTextResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db, require_roles
from app.db.models.user import Role, User
from app.schemas.imports import ImportJobOut, ImportJobErrorOut, CaseFieldOut, ImportPreviewOut
from app.crud.import_jobs import list_import_jobs, list_import_job_errors
from app.services.files import ensure_dirs, save_upload, upload_path, UploadTooLarge
from app.services.imports.errors import SourceError, InvalidTransition
from app.services.imports.fields import CaseField, FIELD_LABELS, REQUIRED_FIELDS, TEMPLATE_COLUMNS
from app.services.imports.service import (
    JobNotFound,
    submit_import_job,
    get_job_status,
    cancel_job,
    get_error_report,
    preview_file,
)
from app.services.imports.sources import open_row_source
from app.services.imports.utils import file_sha256
from app.worker.tasks import run_import_task

router = APIRouter()

ALLOWED_ROLES_VIEW = (Role.admin, Role.manager, Role.clinician, Role.researcher)
ALLOWED_ROLES_EDIT = (Role.admin, Role.manager)


def _check_extension(filename: str | None) -> str:
    if not filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    suffix = Path(filename).suffix.lower()
    if suffix not in settings.allowed_extensions:
        allowed = ", ".join(settings.allowed_extensions)
        raise HTTPException(status_code=400, detail=f"Only {allowed} supported")
    return suffix


def _store(file: UploadFile, user: User) -> Path:
    _check_extension(file.filename)
    ensure_dirs()
    dest = upload_path(user.clinic_id, file.filename)
    try:
        save_upload(file, dest, max_bytes=settings.IMPORT_MAX_FILE_MB * 1024 * 1024)
    except UploadTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e))
    return dest


def _parse_mapping(raw: str) -> dict[str, str | None]:
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="mapping must be a JSON object")
    if not isinstance(mapping, dict) or not all(
        isinstance(k, str) and (v is None or isinstance(v, str)) for k, v in mapping.items()
    ):
        raise HTTPException(status_code=400, detail="mapping must map column names to field names")
    return mapping


@router.get("/fields", response_model=list[CaseFieldOut])
def get_fields(_user=Depends(require_roles(*ALLOWED_ROLES_VIEW))):
    return [
        CaseFieldOut(value=f.value, label=FIELD_LABELS[f], required=f in REQUIRED_FIELDS)
        for f in CaseField
    ]


@router.get("/template", response_class=PlainTextResponse)
def get_template(_user=Depends(require_roles(*ALLOWED_ROLES_VIEW))):
    return PlainTextResponse(
        ",".join(TEMPLATE_COLUMNS) + "\n",
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="case_import_template.csv"'},
    )


@router.post("/preview", response_model=ImportPreviewOut)
def preview_upload(
    file: UploadFile = File(...),
    user: User = Depends(require_roles(*ALLOWED_ROLES_EDIT)),
):
    dest = _store(file, user)
    try:
        preview = preview_file(dest)
    except SourceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        dest.unlink(missing_ok=True)
    return ImportPreviewOut(filename=file.filename, **preview)


@router.post("/upload", response_model=ImportJobOut)
def upload_file(
    file: UploadFile = File(...),
    mapping: str = Form(..., description='JSON object: {"source column": "canonical field"}'),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*ALLOWED_ROLES_EDIT)),
):
    parsed = _parse_mapping(mapping)
    dest = _store(file, user)
    try:
        headers = open_row_source(dest).headers
    except SourceError as e:
        dest.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail=str(e))

    return submit_import_job(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        filename=file.filename,
        file_path=str(dest),
        mapping=parsed,
        enqueue=run_import_task.delay,
        headers=headers,
        file_hash=file_sha256(str(dest)),
    )


@router.get("", response_model=list[ImportJobOut])
def get_imports(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*ALLOWED_ROLES_VIEW)),
):
    return list_import_jobs(db, user.clinic_id)


@router.get("/{import_job_id}", response_model=ImportJobOut)
def get_import(
    import_job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*ALLOWED_ROLES_VIEW)),
):
    try:
        return get_job_status(db, import_job_id, user.clinic_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{import_job_id}/errors", response_model=list[ImportJobErrorOut])
def get_errors(
    import_job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*ALLOWED_ROLES_VIEW)),
):
    try:
        get_job_status(db, import_job_id, user.clinic_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return list_import_job_errors(db, import_job_id)


@router.post("/{import_job_id}/cancel", response_model=ImportJobOut)
def cancel_import(
    import_job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*ALLOWED_ROLES_EDIT)),
):
    try:
        return cancel_job(db, import_job_id, user.clinic_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{import_job_id}/error-report")
def download_error_report(
    import_job_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*ALLOWED_ROLES_VIEW)),
):
    try:
        path = get_error_report(db, import_job_id, user.clinic_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return FileResponse(
        path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=f"import_{import_job_id}_errors.xlsx",
    )
