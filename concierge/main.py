# main.py
"""
Concierge Service - FastAPI Application

Wires the key-value store, catalog, search index and availability provider
into one ConciergeOrchestrator per app. Tests build their own
ConciergeServices and pass them to create_app().
"""

import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from concierge import __version__
from concierge.agents.orchestrator import ConciergeOrchestrator
from concierge.agents.telemetry import TelemetryAggregator
from concierge.agents.workers import WorkerDeps
from concierge.api import chat_router, nlu_router
from concierge.config import Settings, settings
from concierge.errors import ConciergeError, ErrorCode
from concierge.interfaces.availability_provider import AvailabilityProvider, HttpAvailabilityProvider
from concierge.interfaces.catalog_store import CatalogStore, create_catalog_store
from concierge.interfaces.kv_store import KeyValueStore, create_kv_store
from concierge.interfaces.quota_manager import QuotaManager
from concierge.interfaces.search_index import OpenSearchIndex, SearchIndex
from concierge.interfaces.session_store import SessionStore
from concierge.llm.reasoning import ReasoningGenerator
from concierge.schemas import ErrorResponse


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)


@dataclass
class ConciergeServices:
    """Everything the routers need, owned by one app"""
    config: Settings
    kv: KeyValueStore
    catalog: CatalogStore
    sessions: SessionStore
    quotas: QuotaManager
    telemetry: TelemetryAggregator
    orchestrator: ConciergeOrchestrator
    http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def build(
        cls,
        config: Settings,
        kv: KeyValueStore,
        catalog: CatalogStore,
        search_index: Optional[SearchIndex] = None,
        availability_provider: Optional[AvailabilityProvider] = None,
        reasoning: Optional[ReasoningGenerator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ConciergeServices":
        sessions = SessionStore(kv, config)
        quotas = QuotaManager(kv, config)
        telemetry = TelemetryAggregator()
        deps = WorkerDeps(
            catalog=catalog,
            config=config,
            kv=kv,
            search_index=search_index,
            availability_provider=availability_provider,
        )
        orchestrator = ConciergeOrchestrator(config, sessions, quotas, deps, telemetry, reasoning=reasoning)
        return cls(
            config=config,
            kv=kv,
            catalog=catalog,
            sessions=sessions,
            quotas=quotas,
            telemetry=telemetry,
            orchestrator=orchestrator,
            http_client=http_client,
        )

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.kv.close()


async def build_services(config: Settings) -> ConciergeServices:
    """Connect real collaborators from configuration"""
    kv = await create_kv_store(config)
    catalog = create_catalog_store(config)
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.SEARCH_TIMEOUT_SECONDS))

    search_index = None
    if config.OPENSEARCH_URL:
        search_index = OpenSearchIndex(
            config.OPENSEARCH_URL, config.OPENSEARCH_INDEX,
            timeout=config.SEARCH_TIMEOUT_SECONDS, client=http_client,
        )
    else:
        logger.warning("OPENSEARCH_URL not set, search uses catalog name lookups")

    provider = None
    if config.AVAILABILITY_SOURCE != "LOCAL" and config.AVAILABILITY_PROVIDER_URL:
        provider = HttpAvailabilityProvider(
            config.AVAILABILITY_PROVIDER_URL, config.AVAILABILITY_SOURCE,
            api_key=config.AVAILABILITY_PROVIDER_KEY,
            timeout=config.SEARCH_TIMEOUT_SECONDS, client=http_client,
        )

    return ConciergeServices.build(
        config, kv, catalog,
        search_index=search_index,
        availability_provider=provider,
        http_client=http_client,
    )


# ============================================
# Error handlers
# ============================================

async def concierge_error_handler(request: Request, exc: ConciergeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(**exc.to_dict()).model_dump())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {field} {first.get('msg', '')}".strip()
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error=message, code=ErrorCode.INVALID_REQUEST).model_dump(),
    )


# ============================================
# FastAPI Application
# ============================================

def create_app(services: Optional[ConciergeServices] = None, config: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built collaborators (tests); built from config on startup otherwise
        config: Settings, defaults to the module-level settings
    """
    config = services.config if services is not None else (config or settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 50)
        logger.info("Starting Concierge Service")
        logger.info("=" * 50)
        logger.info(f"Environment: {config.API_ENV}")
        logger.info(f"Concierge enabled: {config.AI_CONCIERGE_ENABLED}")
        logger.info(f"LLM provider: {config.LLM_PROVIDER if config.llm_configured else 'none (rules only)'}")

        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = await build_services(config)
        logger.info(f"Key-value store: {app.state.services.kv.backend}")

        yield

        if owned:
            await app.state.services.close()
        logger.info("Concierge Service shutdown complete")

    app = FastAPI(
        title="Concierge Service",
        description="Conversational media recommendations with rule-based NLU and streaming responses.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ConciergeError, concierge_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(chat_router)
    app.include_router(nlu_router)

    @app.get("/")
    async def root():
        return {
            "service": "Concierge Service",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
        }

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "concierge.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_ENV == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
