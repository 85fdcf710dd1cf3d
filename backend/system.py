"""
System API routes for pointstream.

This module provides FastAPI routes for server health and information.
"""

import platform
import sys
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


def _get_package_versions() -> Dict[str, str]:
    """Get versions of key packages."""
    packages = {}

    package_names = [
        "duckdb",
        "pyarrow",
        "pandas",
        "numpy",
        "fastapi",
        "pydantic",
        "uvicorn",
    ]

    for name in package_names:
        try:
            module = __import__(name)
            packages[name] = getattr(module, "__version__", "unknown")
        except ImportError:
            pass

    return packages


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    manager = getattr(request.app.state, "ws_manager", None)
    backend = manager.backend if manager is not None else None
    return {
        "status": "healthy",
        "message": "pointstream server is running",
        "dataset_loaded": backend is not None,
    }


@router.get("/system/info")
async def system_info():
    """Get system and environment information."""
    return {
        "python": {
            "version": sys.version,
            "platform": sys.platform,
        },
        "system": {
            "os": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "packages": _get_package_versions(),
    }
