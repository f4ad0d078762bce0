"""
FastAPI Application Entry Point
School Shop Order Import - Python Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
import os
import asyncio
import logging
import json
import sys
import time
import uuid as _uuid
from typing import Callable

from routers import order_imports
from database import init_db, check_db_health
from settings import CORS_ORIGINS, INIT_DB_ON_STARTUP, LOG_LEVEL


# ---- Logging setup (JSON on stdout) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JsonFormatter())

root = logging.getLogger()
root.handlers = [handler]
root.setLevel(LOG_LEVEL)

logging.getLogger("uvicorn.access").setLevel(logging.INFO)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="School Shop Order Import API",
    description="Imports order exports into school shops",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CORS_ORIGINS) or ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- Request/Response logging middleware ----
def _upload_fields(request: Request) -> str:
    """Size and kind of an order upload; request bodies are never read here."""
    content_type = request.headers.get("content-type", "")
    kind = "multipart" if content_type.startswith("multipart/") else (content_type.split(";")[0] or "-")
    return f"body={kind} bytes={request.headers.get('content-length', '-')}"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        start = time.time()
        request.state.request_id = request_id

        if request.method == "POST":
            logger.info(f"REQ {request.method} {request.url.path} {_upload_fields(request)} rid={request_id}")
        else:
            logger.info(f"REQ {request.method} {request.url.path} rid={request_id}")
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Request failed before a response rid={request_id}")
            raise

        elapsed_ms = int((time.time() - start) * 1000)
        logger.info(f"RES {request.url.path} status={response.status_code} elapsedMs={elapsed_ms} rid={request_id}")
        response.headers["X-Request-Id"] = request_id
        return response

app.add_middleware(RequestIDMiddleware)


@app.get("/")
async def root_endpoint():
    return {"ok": True, "service": "school-shop-order-import"}

@app.get("/healthz")
async def healthz():
    """Basic health check for load balancers."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    """Health check including database status."""
    db_health = await check_db_health()
    overall_status = "healthy" if db_health["status"] == "healthy" else "degraded"
    return {
        "status": overall_status,
        "database": db_health,
        "timestamp": time.time(),
    }


# --- Error handlers ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

# --- Routers ---
app.include_router(order_imports.router, prefix="/api", tags=["order-imports"])

# --- Startup/shutdown ---
@app.on_event("startup")
async def startup():
    logger.info("Starting School Shop Order Import API...")
    if INIT_DB_ON_STARTUP:
        try:
            logger.info("Initializing database tables...")
            await asyncio.wait_for(init_db(), timeout=120)
            logger.info("Database initialized successfully")
        except asyncio.TimeoutError:
            logger.error("DB init timed out after 120s, continuing without init")
        except Exception as e:
            logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)
    else:
        logger.info("Skipping DB init on startup")

@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down School Shop Order Import API...")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
