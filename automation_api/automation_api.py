#!/usr/bin/env python3
"""
Campaign Automation API Server
REST API for automation rules, campaign snapshots, the sync scheduler and assistant tools
"""
import logging
import os
import threading
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from automation_api.routes import (
    assistant_router,
    automation_router,
    campaigns_router,
    scheduler_router,
)
from automation_api.services import AutomationServices, build_services

logger = logging.getLogger(__name__)


def create_app(services: Optional[AutomationServices] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        services: Pre-built service container; built from the environment when omitted
    """
    app = FastAPI(
        title="Campaign Automation API",
        description="Rule-based automation over advertising campaign metrics",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = services or build_services()

    app.include_router(automation_router)
    app.include_router(campaigns_router)
    app.include_router(scheduler_router)
    app.include_router(assistant_router)

    @app.on_event("startup")
    async def startup_event():
        """Start the sync scheduler when enabled for this environment"""
        container: AutomationServices = app.state.services
        config = container.config
        if not config.should_autostart_scheduler():
            logger.info(
                "Scheduler not started automatically "
                f"(APP_ENV={config.app_env}, ENABLE_SCHEDULER={config.enable_scheduler})"
            )
            return

        container.scheduler.start()
        if config.sync_on_startup:
            threading.Thread(
                target=container.scheduler.run_startup_sync,
                name="startup-sync",
                daemon=True
            ).start()

    @app.on_event("shutdown")
    async def shutdown_event():
        app.state.services.scheduler.stop()

    @app.get("/api/v1/health", tags=["health"])
    async def health_check():
        """Health check endpoint"""
        container: AutomationServices = app.state.services
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "storage": container.config.storage_backend,
            "scheduler_running": container.scheduler.is_running,
        }

    return app


def main():
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    port = int(os.getenv('API_PORT', '8000'))
    logger.info(f"Starting Campaign Automation API on port {port}")
    uvicorn.run(create_app(), host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    main()
