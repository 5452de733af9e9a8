"""
Wallet Ledger API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import (
    ConversionUnavailableError, InsufficientFundsError, LedgerError,
    NotFoundError, StorageError, ValidationError
)
from ..logging_config import get_logger, setup_logging
from .auth import WalletSystem, get_wallet_system, issue_token
from .products import router as products_router
from .wallet import router as wallet_router


ERROR_STATUS = [
    (ValidationError, 400),
    (InsufficientFundsError, 400),
    (NotFoundError, 404),
    (ConversionUnavailableError, 503),
    (StorageError, 500),
]


def status_for(error: LedgerError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(system: Optional[WalletSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Wallet system to serve; the lazily created global one when None
    """
    config = system.config if system else get_config()
    setup_logging(config.log_level, "wallet", config.log_format, config.log_file)
    logger = get_logger("wallet.api")

    app = FastAPI(
        title="Wallet Ledger API",
        description="Custodial wallet ledger with atomic balance movements",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_wallet_system] = lambda: system

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = status_for(exc)
        if status_code >= 500 and not isinstance(exc, ConversionUnavailableError):
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
            detail = "Storage failure, nothing was applied"
        else:
            detail = str(exc)
        return JSONResponse(status_code=status_code, content={"detail": detail})

    app.include_router(wallet_router, prefix="/api", tags=["Wallet"])
    app.include_router(products_router, prefix="/api", tags=["Products"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "wallet_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Wallet Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "fund": "/api/fund",
                "pay": "/api/pay",
                "balance": "/api/bal",
                "statement": "/api/stmt",
                "products": "/api/product",
                "buy": "/api/buy"
            }
        }

    logger.info(f"Wallet Ledger API {__version__} configured")
    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "wallet_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )


__all__ = ["app", "create_app", "run_server", "issue_token", "WalletSystem", "get_wallet_system"]
