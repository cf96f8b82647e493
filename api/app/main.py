# api/app/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from api.app.middleware.request_logging import RequestLoggingMiddleware
from api.app.routes import analysis_jobs, health

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Analysis Jobs API",
    description="Enqueue and poll AI trade/period analysis jobs",
    version="0.1.0",
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(health.router)
app.include_router(analysis_jobs.router, prefix="/v1")
