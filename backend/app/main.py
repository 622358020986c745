import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.logging import configure_logging, logger
from app.api.router import api_router
from app.db.session import engine
from app.db.base import Base
from app.db import models  # noqa: F401  (register tables on Base.metadata)
from app.services.files import ensure_dirs
from app.services.imports.errors import ImportJobError, InvalidTransition
from app.services.seed import seed_demo


def create_app() -> FastAPI:
    configure_logging(settings.ENV, settings.LOG_LEVEL)
    app = FastAPI(title="VetOnco case import", version="0.1.0")

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # routers translate the errors they expect; anything that slips through lands here
    @app.exception_handler(ImportJobError)
    async def _import_error(request: Request, exc: ImportJobError):
        code = 409 if isinstance(exc, InvalidTransition) else 400
        logger.warning("import_error_unhandled", error=str(exc), kind=exc.__class__.__name__, status_code=code)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        ensure_dirs()
        # dev convenience only; elsewhere the schema comes from alembic
        if settings.ENV == "dev":
            Base.metadata.create_all(bind=engine)
        if settings.SEED_DEMO and settings.ENV == "dev":
            seed_demo()

    app.include_router(api_router)
    logger.info("app_started", env=settings.ENV)
    return app

app = create_app()
