import datetime as dt
import os
from pathlib import Path
from types import SimpleNamespace

os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_DEMO"] = "false"

import openpyxl
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.models.clinic import Clinic
from app.db.models.user import User, Role

HEADER = ["Pet Name", "Kind", "Breed", "Sex", "Age", "Diagnosed", "Tumour"]
MAPPING = {
    "Pet Name": "patientName",
    "Kind": "species",
    "Breed": "breed",
    "Sex": "sex",
    "Age": "ageYears",
    "Diagnosed": "diagnosisDate",
    "Tumour": "tumourTypeCustom",
}


def make_rows(n: int, bad_date_at: int | None = None) -> list[list]:
    rows = []
    for i in range(1, n + 1):
        diagnosed = "2024-13-45" if i == bad_date_at else dt.date(2024, 1, i)
        rows.append([f"Pet {i}", "Canine", "Golden Retriever", "female spayed", 7, diagnosed, "Lymphoma"])
    return rows


def make_xlsx(path: Path, header: list, rows: list[list], trailing_blank: int = 0) -> Path:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Cases"
    ws.append(header)
    for r in rows:
        ws.append(r)
    for _ in range(trailing_blank):
        ws.append([None] * len(header))
    wb.save(path)
    return path


@pytest.fixture(autouse=True)
def _dirs(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setattr(settings, "IMPORT_PROGRESS_EVERY", 2)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def clinic(db) -> Clinic:
    c = Clinic(name="Lagos Vet Oncology", state="LAGOS", city="Ikeja")
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@pytest.fixture
def manager(db, clinic) -> User:
    u = User(email="manager@example.com", name="Ada Manager", role=Role.manager.value, clinic_id=clinic.id)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def xlsx_file(tmp_path):
    def _make(rows: list[list], header: list | None = None, name: str = "cases.xlsx", **kw) -> Path:
        return make_xlsx(tmp_path / name, header or HEADER, rows, **kw)
    return _make


@pytest.fixture
def client(session_factory, clinic, manager, monkeypatch):
    from fastapi.testclient import TestClient
    from app.main import app
    from app.core.deps import get_db, get_current_user
    from app.api.routers import imports as imports_router

    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    identity = SimpleNamespace(id=manager.id, clinic_id=clinic.id, role=Role.manager.value, is_active=True)
    enqueued: list[int] = []
    monkeypatch.setattr(imports_router, "run_import_task", SimpleNamespace(delay=enqueued.append))

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: identity
    with TestClient(app) as c:
        c.identity = identity
        c.enqueued = enqueued
        yield c
    app.dependency_overrides.clear()
