"""
FlexSort API entry point: app wiring, structured logging and ops endpoints.
"""
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from config import get_settings
from database import SessionLocal, init_db
from routers import assessments_router
from routers.assessments import limiter

settings = get_settings()
logger = logging.getLogger("flexsort")

# Attributes every LogRecord has; anything else came in through `extra=`
_RECORD_FIELDS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with `extra=` fields merged in."""
    def format(self, record):
        entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({k: v for k, v in vars(record).items() if k not in _RECORD_FIELDS})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging():
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info(
        "FlexSort API ready",
        extra={"block_size": settings.block_size, "total_blocks": settings.total_blocks},
    )
    yield


app = FastAPI(
    title="FlexSort API",
    description="Adaptive rule-switching card-sorting test for cognitive flexibility.",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "assessments", "description": "Sorting sessions, scorecards and tiered reports"},
        {"name": "ops", "description": "Health checks"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(assessments_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path != "/health":
        logger.info(
            "%s %s %d", request.method, request.url.path, response.status_code,
            extra={"duration_ms": round((time.perf_counter() - start) * 1000)},
        )
    return response


@app.get("/", tags=["ops"])
async def root():
    return {"name": "FlexSort API", "version": app.version, "docs": "/docs"}


@app.get("/health", tags=["ops"])
async def health_check():
    """Readiness probe. Reports the database as degraded rather than failing."""
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        logger.exception("Health check could not reach the database")
        database = "error"
    return {"status": "healthy" if database == "ok" else "degraded", "database": database}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
