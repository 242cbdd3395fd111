"""
SecureBank API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import BankConfig, DEFAULT_JWT_SECRET, get_config
from ..errors import BankError, ValidationError
from ..logging_config import setup_logging
from ..storage import CredentialStore
from .auth import BankingSystem
from .identity import router as identity_router
from .users import router as users_router
from .accounts import router as accounts_router
from .transactions import router as transactions_router


def create_app(config: Optional[BankConfig] = None,
               store: Optional[CredentialStore] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = config or get_config()
    logger = setup_logging(config.log_level)

    if config.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("Using the default JWT secret; set SECURE_BANK_JWT_SECRET in production")

    system = BankingSystem(config, store)
    system.store.initialize()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        system.close()

    app = FastAPI(
        title="SecureBank API",
        description="Signup, signin and read-only access to a user's accounts and transactions",
        version=__version__,
        lifespan=lifespan
    )
    app.state.banking_system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankError)
    async def bank_error_handler(request: Request, exc: BankError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError("Malformed request")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    app.include_router(identity_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(users_router, prefix="/api/user", tags=["User"])
    app.include_router(accounts_router, prefix="/api/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "secure_bank_api",
            "version": __version__
        }

    return app
