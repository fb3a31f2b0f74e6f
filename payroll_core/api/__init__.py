"""
Payroll Loan API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..logging_config import correlation_context
from .loans import router as loans_router
from .contracts import router as contracts_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Payroll Loan API",
        description="Employee loans repaid through scheduled payroll deductions",
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

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        """Tag every log line written while serving a request"""
        with correlation_context(request.headers.get("X-Request-ID")) as correlation_id:
            response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    # Include routers
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(contracts_router, prefix="/contracts", tags=["Contracts"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "payroll_loan_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Payroll Loan API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "contracts": "/contracts/download",
            }
        }

    return app
