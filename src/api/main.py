"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routers import cache, data_sources, metrics, queries
from src.core.errors import MetricsLayerError
from src.core.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="Metrics Query Layer",
    version="0.1.0",
    description="Metric expressions compiled to SQL over dynamically created data-source tables",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
app.include_router(data_sources.router, prefix="/data-sources", tags=["Data sources"])
app.include_router(queries.router, prefix="/query", tags=["Queries"])
app.include_router(cache.router, prefix="/cache", tags=["Cache"])


@app.exception_handler(MetricsLayerError)
async def metrics_layer_error_handler(request: Request, exc: MetricsLayerError) -> JSONResponse:
    logger.warning("%s %s failed (%d): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "errors": exc.errors},
    )


@app.get("/health")
def health():
    return {"status": "ok"}
