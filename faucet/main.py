from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import faucet as faucet_api
from .api import health
from .config import load_tokens, settings
from .core.errors import FaucetError
from .logging_config import setup_logging
from .services.faucet import build_faucet_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    service = build_faucet_service(settings, load_tokens(settings.tokens_file))
    await service.startup()
    app.state.faucet = service
    try:
        yield
    finally:
        await service.shutdown()


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Dual-Ledger Faucet",
        description="Test-token faucet for a Cosmos-SDK chain with an EVM view",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.add_exception_handler(FaucetError, faucet_api.faucet_error_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(faucet_api.router, tags=["Faucet"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Dual-Ledger Faucet",
            "version": "0.1.0",
            "send": "/send/{address}",
            "config": "/config.json",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "faucet.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
