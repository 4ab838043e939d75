"""School Records - FastAPI entrypoint."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ServerSelectionTimeoutError

from app.api import attendance, calendar, classes, results
from app.config import settings
from app.db import db_shutdown, db_startup, get_store
from app.services.class_hierarchy import initialize_class_hierarchy

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await db_startup()
    except ServerSelectionTimeoutError as e:
        logger.error("MongoDB is not running. Start it with: docker compose up -d (from project root)")
        raise RuntimeError("MongoDB connection failed. Start MongoDB (e.g. docker compose up -d).") from e
    result = await initialize_class_hierarchy(get_store())
    if not result.success:
        logger.warning(f"Class hierarchy not initialized at startup: {result.message}")
    yield
    await db_shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Attendance, result approval and class progression records",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(errors)},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(attendance.router, prefix="/api/attendance", tags=["Attendance"])
app.include_router(results.router, prefix="/api/results", tags=["Results"])
app.include_router(classes.router, prefix="/api/classes", tags=["Classes"])
app.include_router(calendar.router, prefix="/api/calendar", tags=["Calendar"])


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name, "store": settings.store_backend}
