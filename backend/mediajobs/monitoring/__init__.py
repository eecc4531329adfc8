"""
HTTP API for the job manager (FastAPI).
"""

from .server import create_router, create_app, run_server, DEFAULT_HOST, DEFAULT_PORT

__all__ = [
    "create_router",
    "create_app",
    "run_server",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
]
