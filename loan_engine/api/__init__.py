"""
Loan Engine API Application Factory

Stateless HTTP surface over the engine: callers send the loan state they
hold and receive computed results. Nothing is persisted here.
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .schedules import router as schedules_router
from .repayments import router as repayments_router
from .loans import router as loans_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Engine API",
        description="Amortization schedules and repayment allocation for loan servicing",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(schedules_router, prefix="/schedules", tags=["Schedules"])
    app.include_router(repayments_router, prefix="/repayments", tags=["Repayments"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_engine_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Loan Engine API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "schedules": "/schedules/preview",
                "repayments": "/repayments",
                "loans": "/loans/status",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8091, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_engine.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
