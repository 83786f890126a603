"""
FastAPI application entry point for the Foody backend.
"""

from __future__ import annotations

from fastapi import FastAPI

from foody.config import get_settings
from foody.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Foody Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
