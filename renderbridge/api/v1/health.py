"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


@router.get("/health")
async def health_check():
    """Service health, render worker pool state, and system info."""
    workers = None
    if _dispatcher is not None:
        workers = {
            "running": _dispatcher.running,
            "concurrency": _dispatcher.concurrency,
            "active": _dispatcher.active,
            "pending": _dispatcher.pending,
        }

    return {
        "status": "healthy" if workers and workers["running"] else "starting",
        "workers": workers,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
