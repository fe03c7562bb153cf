"""REST API module for the ad service.

This module provides HTTP endpoints for:
- Paying for and publishing ads
- Hybrid search over published ads
- Impression and click tracking
- The JSON-RPC tool interface for agents
- System health monitoring
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ads.exceptions import AdServiceError
from config import get_settings
from database import init_db, get_pool, close as db_close
from workers import run_cleanup_worker
from .dependencies import Services, build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    owns_services = getattr(app.state, 'services', None) is None
    cleanup_task = None

    if owns_services:
        settings = get_settings()
        await init_db(settings['db_url'])
        app.state.services = build_services(settings, await get_pool())
        cleanup_task = asyncio.create_task(run_cleanup_worker(
            app.state.services.store,
            app.state.services.indexer,
            interval=settings['cleanup_interval'],
        ))

    yield

    logger.info("Shutting down API...")
    await app.state.services.saga.drain()
    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
    if owns_services:
        await db_close()

async def service_error_handler(request: Request, exc: AdServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={'error': 'validation_error', 'detail': '; '.join(errors), 'errors': errors},
    )

async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={'error': 'internal_error', 'detail': 'Internal server error'},
    )

def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the application.
    
    Args:
        services: Pre-built services; when given, startup skips database
            initialization and the cleanup worker
    """
    app = FastAPI(
        title="Threead API",
        description="Paid classified ads with semantic search",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.services = services

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AdServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    from .ads import router as ads_router
    from .mcp import router as mcp_router
    from .system import router as system_router

    app.include_router(ads_router)
    app.include_router(mcp_router)
    app.include_router(system_router)
    return app

app = create_app()
