import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from filevault.core.config import get_settings
from filevault.core.errors import FileVaultError
from filevault.core.logging import configure_logging
from filevault.core.storage import get_storage
from filevault.models import Base
from filevault.models.database import SessionLocal, engine
from filevault.routers import files
from filevault.services.files import reconcile_storage

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    storage = get_storage()
    logger.info("File storage ready (%s backend)", settings.storage_backend)

    if settings.reconcile_on_startup:
        db = SessionLocal()
        try:
            reconcile_storage(db, storage, settings.reconcile_grace_seconds)
        finally:
            db.close()

    yield
    logger.info("Shutting down")


app = FastAPI(title="filevault", lifespan=lifespan)

# include our routers
app.include_router(files.router)


@app.exception_handler(FileVaultError)
async def filevault_error_handler(request: Request, exc: FileVaultError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail or exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.detail or exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/health")
def health():
    return {"status": "ok"}
