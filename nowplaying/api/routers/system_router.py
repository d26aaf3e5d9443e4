"""Liveness, status and metrics endpoints"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nowplaying import __version__
from nowplaying.shared.database import get_database

from ..core.config import get_settings

router = APIRouter(tags=["system"])


def _uptime(request: Request) -> int:
    return int(time.time() - request.app.state.started_at)


@router.get("/")
async def root():
    return {"service": "nowplaying-api", "status": "running"}


@router.get("/health")
async def health(request: Request):
    """Answers as long as the process is up; the database is not consulted."""
    return {"status": "healthy", "uptime_seconds": _uptime(request)}


@router.get("/status")
async def status(request: Request):
    try:
        db_ok = await get_database().ping()
    except RuntimeError:
        db_ok = False
    return {
        "service": "nowplaying-api",
        "version": __version__,
        "uptime_seconds": _uptime(request),
        "db_connected": db_ok,
        "environment": get_settings().environment,
    }


@router.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
async def ping():
    return "pong"


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition of the process metrics"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
