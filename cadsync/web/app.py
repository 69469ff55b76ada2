"""
Web Application Entry Point
============================

FastAPI application exposing sync control, status, conflicts and progress.

Author: CADSync Project
License: MIT
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routes import api_router, set_config_loader, set_orchestrator
from ..config.config_loader import ConfigLoader
from ..core.exceptions import StateStoreError
from ..core.orchestrator import Orchestrator
from ..scheduler.task_scheduler import TaskScheduler
from ..utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    orchestrator: Optional[Orchestrator] = None,
    config_loader: Optional[ConfigLoader] = None,
    scheduler: Optional[TaskScheduler] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    With no orchestrator given, configuration is loaded and the orchestrator
    and scheduler are built on startup.

    Args:
        orchestrator: Pre-built orchestrator (tests, embedding)
        config_loader: Loader used to read and save configuration
        scheduler: Pre-built scheduler
    """
    app = FastAPI(
        title="CADSync",
        description="Three-way CAD file synchronization",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api", tags=["API"])

    loader = config_loader or ConfigLoader()
    set_config_loader(loader)
    app.state.scheduler = scheduler

    if orchestrator is not None:
        set_orchestrator(orchestrator)
    app.state.orchestrator = orchestrator

    @app.exception_handler(StateStoreError)
    async def state_store_error_handler(request: Request, exc: StateStoreError):
        logger.error(f"State store failure on {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": f"State store unavailable: {exc}"})

    @app.on_event("startup")
    async def startup_event():
        """Initialize application on startup."""
        logger.info("CADSync web application starting...")

        if app.state.orchestrator is None:
            config = loader.load()
            setup_logging(
                log_level=config.app.log_level,
                log_to_file=config.app.log_to_file,
                log_file_path=config.app.log_file_path,
                log_rotation_size=config.app.log_rotation_size,
                log_retention_count=config.app.log_retention_count,
                json_format=config.app.log_json
            )
            app.state.orchestrator = Orchestrator(config)
            set_orchestrator(app.state.orchestrator)

        if app.state.scheduler is None:
            app.state.scheduler = TaskScheduler(
                app.state.orchestrator.config,
                sync_callback=app.state.orchestrator.sync_now
            )
        app.state.scheduler.start()

        logger.info("CADSync initialized successfully")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Clean up on shutdown."""
        logger.info("CADSync web application shutting down...")

        if app.state.scheduler:
            app.state.scheduler.stop()
        if app.state.orchestrator:
            app.state.orchestrator.close()

        logger.info("Shutdown complete")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "cadsync"}

    return app


def main():
    """Run the API server with uvicorn."""
    import uvicorn

    config = ConfigLoader().load()
    uvicorn.run(
        create_app(),
        host=config.app.host,
        port=config.app.port,
        log_level=str(config.app.log_level).lower()
    )


if __name__ == "__main__":
    main()
