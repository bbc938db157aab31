"""
Jewel Ledger API Application Factory
"""

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .dependencies import LedgerSystem, get_ledger_system
from .loans import router as loans_router
from .savings import router as savings_router
from .redemptions import router as redemptions_router
from .rates import router as rates_router
from .products import router as products_router
from .. import __version__


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Jewel Ledger API",
        description="Gold loan and savings scheme ledger for jewelry shops",
        version=__version__,
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

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(savings_router, prefix="/savings", tags=["Savings"])
    app.include_router(redemptions_router, prefix="/redemptions", tags=["Redemptions"])
    app.include_router(rates_router, prefix="/rates", tags=["Rates"])
    app.include_router(products_router, prefix="/products", tags=["Products"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "jewel_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Jewel Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "savings": "/savings",
                "redemptions": "/redemptions",
                "rates": "/rates",
                "products": "/products",
                "audit": "/audit/verify",
            }
        }

    @app.get("/audit/verify")
    async def verify_audit_trail(system: LedgerSystem = Depends(get_ledger_system)):
        """Check the audit hash chain"""
        return system.audit_trail.verify_integrity()

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8095, debug: bool = False,
               log_level: str = "info", workers: int = 1):
    """Run the FastAPI server; reload mode always runs a single worker"""
    uvicorn.run(
        "jewel_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        workers=1 if debug else workers,
        log_level=log_level.lower()
    )
