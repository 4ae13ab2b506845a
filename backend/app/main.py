from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import time
import uuid
from datetime import datetime, timezone
from .routers.pdv import router as pdv_router
from .routers.cash_register import router as cash_register_router
from .routers.payments import router as payments_router
from .config import settings
from .db import get_conn, close_pools
from .errors import PdvError, SettlementUndetermined
from .logs import json_log
from .state import EngineState

app = FastAPI(title="PDV Transaction & Settlement API", version=settings.api_version)
app.state.engine = EngineState(settings)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


# Engine errors are expected outcomes (no order selected, closed register, ...);
# answer with their short detail instead of a 500.
@app.exception_handler(PdvError)
def _pdv_error(req: Request, exc: PdvError):
    content = {"detail": exc.detail}
    if isinstance(exc, SettlementUndetermined):
        content["payment_id"] = exc.payment_id
        content["status"] = "pending"
    json_log(
        "warning" if exc.status_code >= 500 else "info",
        "pdv.error",
        request_id=_current_request_id(req),
        path=req.url.path,
        error=type(exc).__name__,
        detail=exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

# Cashier and admin web apps run on different origins during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(pdv_router)
app.include_router(cash_register_router)
app.include_router(payments_router)


@app.on_event("startup")
def _startup():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    except Exception as exc:
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))
        return
    try:
        app.state.engine.reload_customers()
    except PdvError as exc:
        # The cashier can retry with POST /pdv/reload once storage is back.
        json_log("warning", "startup.ledger_reload_failed", error=exc.detail)


@app.on_event("shutdown")
def _shutdown():
    # Polls are soft timeouts; pending payments get picked up by the settlement worker.
    app.state.engine.cancel_polls()
    close_pools()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": "pdv-backend",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if not ok:
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


@app.get("/meta")
def meta():
    engine = app.state.engine
    return {
        "service": "pdv-backend",
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
        "customers": len(engine.ledger.customers),
        "payments_polling": sum(1 for t in engine.poll_tasks.values() if not t.done()),
    }
