import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from knowledge.api import admin, documents, ingest, query, review
from knowledge.db import engine
from knowledge.errors import StorageFailure

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    logger.info("JACC knowledge service starting")
    yield
    await engine.dispose()
    logger.info("JACC knowledge service stopped")


app = FastAPI(
    title="JACC Knowledge",
    description="Document ingestion, retrieval cascade and answer review for JACC.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(ingest.router, tags=["ingest"])
app.include_router(documents.router, tags=["documents"])
app.include_router(query.router, tags=["query"])
app.include_router(admin.router, prefix="/v0/admin", tags=["admin"])
app.include_router(review.router, prefix="/v0/admin", tags=["review"])


@app.exception_handler(StorageFailure)
async def storage_failure_handler(request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage unavailable, nothing was saved"},
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
