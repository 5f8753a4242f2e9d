"""
Banking Ledger API Application Factory
"""

from fastapi import FastAPI

from .accounts import router as accounts_router
from .. import __version__


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Banking Ledger API",
        description="Personal banking ledger: accounts, deposits, withdrawals and transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger_api",
            "version": __version__
        }

    return app
