from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import init_db
from .routers import perks, staff, admin
from .core.config import get_settings
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("perks-svc")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.events_enabled:
        try:
            await nats_connect()
        except Exception as e:
            logger.warning("nats unavailable at startup: %s", e)
    if settings.rl_enabled and not await ping_redis():
        logger.warning("redis unavailable at startup; rate limiting fails open")
    yield
    await nats_close()
    await close_redis()

app = FastAPI(title="perks-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- error bodies are {"error": "..."} across the service
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": detail},
                        headers={**(exc.headers or {}), "Cache-Control": "no-store"})

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    first = errs[0] if errs else {}
    field = ".".join(str(x) for x in first.get("loc", ()) if x not in ("body", "query", "path"))
    msg = f"{field}: {first.get('msg', 'invalid')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": msg}, headers={"Cache-Control": "no-store"})

@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("store error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Unable to complete the request. Try again."},
                        headers={"Cache-Control": "no-store"})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Unexpected error. Try again."},
                        headers={"Cache-Control": "no-store"})

app.include_router(perks.router)
app.include_router(staff.router)
app.include_router(admin.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "perks-svc"}

Instrumentator().instrument(app).expose(app)
