"""
Peer Lending API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .engine import router as engine_router
from .loans import router as loans_router
from .reservations import router as reservations_router
from .funding import router as funding_router
from .system import LendingSystem, get_lending_system
from ..config import get_config
from ..logging_config import setup_logging_from_config


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Peer Lending Core API",
        description="Amortization, payment allocation and reinvestment for peer-to-peer loans",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(engine_router, prefix="/engine", tags=["Engine"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(reservations_router, prefix="/reservations", tags=["Reservations"])
    app.include_router(funding_router, prefix="/funding", tags=["Funding"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "peer_lending_api",
            "version": "1.0.0"
        }

    return app


app = create_app()

__all__ = ["app", "create_app", "run_server", "LendingSystem", "get_lending_system"]


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging_from_config()
    uvicorn.run(
        "peer_lending.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
