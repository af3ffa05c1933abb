"""FastAPI application for the Simpro maintenance automation service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.clients.errors import SimproError
from src.config import settings
from src.database import init_db, close_db
from src.routes.admin import router as admin_router
from src.routes.webhooks import router as webhooks_router
from src.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("simpro-automation starting up")
    if settings.idempotency_backend == "sql":
        await init_db()
    if settings.renewal_schedule_enabled:
        start_scheduler()
    yield
    logger.info("simpro-automation shutting down")
    stop_scheduler()
    await close_db()


app = FastAPI(
    title="Simpro Maintenance Automation",
    description="Webhook reconciliation and renewal scheduling for Simpro maintenance contracts",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SimproError)
async def simpro_error_handler(request: Request, exc: SimproError) -> JSONResponse:
    logger.warning("Simpro error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=exc.to_dict())


app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(admin_router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "simpro-automation"}
