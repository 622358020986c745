from pathlib import Path
import shutil
import uuid
from fastapi import UploadFile
from app.core.config import settings

class UploadTooLarge(Exception):
    pass

def ensure_dirs():
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    Path(settings.EXPORT_DIR).mkdir(parents=True, exist_ok=True)

def upload_path(clinic_id: int, filename: str) -> Path:
    # unique name so parallel uploads of the same file never overwrite each other
    safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in Path(filename).name)
    return Path(settings.UPLOAD_DIR) / f"{clinic_id}_{uuid.uuid4().hex}_{safe}"

def save_upload(file: UploadFile, dest_path: Path, max_bytes: int | None = None) -> int:
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    with dest_path.open("wb") as f:
        shutil.copyfileobj(file.file, f)
    size = dest_path.stat().st_size
    if max_bytes is not None and size > max_bytes:
        dest_path.unlink()
        raise UploadTooLarge(f"File is larger than {max_bytes // (1024 * 1024)} MB")
    return size
