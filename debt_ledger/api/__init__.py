"""
Debt Ledger API Application Factory
"""

from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .debts import router as debts_router
from .installments import router as installments_router
from .payments import router as payments_router
from .dashboard import router as dashboard_router
from .. import __version__
from ..debts import DebtManager


def create_app(manager: Optional[DebtManager] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        manager: Debt manager to serve; built from configuration on first
            request when omitted
    """
    app = FastAPI(
        title="Debt Ledger API",
        description="Amortization schedules and payment reconciliation for personal debts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(debts_router, prefix="/debts", tags=["Debts"])
    app.include_router(installments_router, prefix="/installments", tags=["Installments"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "debt_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Debt Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "debts": "/debts",
                "installments": "/installments",
                "payments": "/payments",
                "dashboard": "/dashboard/summary",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "debt_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
