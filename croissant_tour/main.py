from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from croissant_tour.core.config import settings
from croissant_tour.core.errors import register_exception_handlers
from croissant_tour.core.logging_config import configure_logging
from croissant_tour.db.base import Base
from croissant_tour.db.session import engine

import croissant_tour.models

from croissant_tour.routers import dashboard, places, ratings

configure_logging(log_dir=settings.log_dir, level=settings.log_level)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Croissant Tour", version="0.1.0")

    # The identity cookie is same-site only, so no credentialed cross-origin calls
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        Base.metadata.create_all(bind=engine)
        logger.info("DB ready (%s)", engine.dialect.name)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error")
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})
        duration_ms = int((time.time() - start) * 1000)
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration_ms)
        return response

    register_exception_handlers(app)

    @app.get("/health", include_in_schema=False)
    def health() -> dict:
        return {"status": "ok"}

    app.include_router(ratings.router)
    app.include_router(places.router)
    app.include_router(dashboard.router)

    return app


app = create_app()
