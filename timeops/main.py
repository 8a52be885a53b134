
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from dotenv import load_dotenv
import time
import logging
from timeops.utils.logging import configure_logging
from timeops.utils.ids import request_id as get_request_id
from timeops.config import settings
from timeops.engine import build_engine
from timeops.models import ApiResponse
from timeops.middleware.cors import setup_cors
from timeops.observability.metrics import setup_metrics
from timeops.routes import timer as timer_routes
from timeops.routes import reviews as review_routes
from timeops.routes import invoices as invoice_routes

load_dotenv()
configure_logging()

logger = logging.getLogger(__name__)

app = FastAPI(title="timeops", version="0.1")

setup_metrics(app)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add request ID to all requests and responses, log request/response."""

    async def dispatch(self, request: Request, call_next):
        req_id = get_request_id(request.headers.get("x-request-id"))
        request.state.request_id = req_id

        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"{request.method} {request.url.path} status={response.status_code}",
            extra={
                "request_id": req_id,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response


app.add_middleware(RequestIDMiddleware)
setup_cors(app)


@app.on_event("startup")
async def _startup():
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine()
    if app.state.engine.scheduler is not None:
        await app.state.engine.scheduler.mount()
    logger.info("timeops started")


@app.on_event("shutdown")
async def _shutdown():
    engine = getattr(app.state, "engine", None)
    if engine is not None and engine.scheduler is not None:
        engine.scheduler.unmount()


@app.get("/healthz")
async def health(request: Request):
    """Basic health check."""
    req_id = get_request_id(request.headers.get("x-request-id"))
    return ApiResponse.success(data={"status": "healthy"}, request_id=req_id)


@app.get("/readyz")
async def readiness(request: Request):
    """Readiness: engine built, API token configured, timer synced at least once."""
    req_id = get_request_id(request.headers.get("x-request-id"))
    engine = getattr(app.state, "engine", None)

    checks = {
        "engine": "ready" if engine is not None else "missing",
        "api_token": "configured" if settings.API_TOKEN else "missing",
        "timer_sync": "synced" if engine is not None and engine.timer.synced else "pending",
    }
    all_ready = checks["engine"] == "ready" and checks["timer_sync"] == "synced"

    return ApiResponse.success(
        data={"ready": all_ready, "checks": checks},
        request_id=req_id,
    )


app.include_router(timer_routes.router)
app.include_router(review_routes.router)
app.include_router(invoice_routes.router)
