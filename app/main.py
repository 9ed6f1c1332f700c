import os
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import db_manager
from core.logging import configure_logging
from plugins.rentals.container import RentalsServices, build_services
from plugins.rentals.plugin import register_exception_handlers, router as rentals_router
from plugins.rentals.services.pdf_service import InvoicePdfWriter
from plugins.rentals.storage.store import select_store

logger = structlog.get_logger()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def create_app(services: Optional[RentalsServices] = None) -> FastAPI:
    """Build the API. Passing ``services`` skips store selection at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        logger.info("Starting rentals back office...")
        if services is None:
            store = await select_store(settings.DATA_DIR)
            pdf_writer = InvoicePdfWriter(os.path.join(settings.DATA_DIR, "invoices"))
            app.state.rentals = build_services(store, settings, pdf_writer=pdf_writer)
        else:
            app.state.rentals = services
        logger.info("rentals_started", store=app.state.rentals.store.mode)

        yield

        await db_manager.close()
        logger.info("Shutting down rentals back office...")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Contracts, rent invoicing and indexing",
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

    register_exception_handlers(app)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unexpected_exception",
            error=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(rentals_router)

    @app.get("/")
    async def root():
        return {"service": settings.APP_NAME, "status": "running", "docs": "/docs"}

    @app.get("/health")
    async def health():
        return await db_manager.health_check()

    return app


app = create_app()
