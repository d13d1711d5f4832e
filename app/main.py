"""
Nestmate — FastAPI Application Entry Point

Production-ready application with:
- Async lifespan that wires the matching services and owns their resources
- CORS, timeout, and structured-logging middleware
- Health-check endpoint
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.config import get_settings
from app.database import dispose_engine, get_session_factory
from app.services.attribute_service import AttributeScorer, HardFilter
from app.services.candidate_service import BatchEmbeddingFetcher, CandidateRetriever
from app.services.embedding_service import EmbeddingProvider, GeminiEmbeddingProvider
from app.services.hybrid_service import HybridScorer
from app.services.locality_stats import LocalityStatsCache
from app.services.matching_service import MatchingService
from app.services.pairwise_service import PairwiseService
from app.services.user_store import SqlUserStore, UserStore
from app.services.vector_search_service import VectorSearchBackend, VertexVectorSearchBackend

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("nestmate")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def build_services(
    app: FastAPI,
    user_store: UserStore,
    backend: VectorSearchBackend,
    embedding_provider: EmbeddingProvider | None = None,
) -> None:
    """Construct the matching services and attach them to ``app.state``."""
    attribute_scorer = AttributeScorer()
    hard_filter = HardFilter(attribute_scorer)
    hybrid_scorer = HybridScorer(attribute_scorer)
    fetcher = BatchEmbeddingFetcher(backend)

    app.state.matching_service = MatchingService(
        user_store=user_store,
        retriever=CandidateRetriever(backend),
        fetcher=fetcher,
        hybrid_scorer=hybrid_scorer,
        hard_filter=hard_filter,
        embedding_provider=embedding_provider,
    )
    app.state.pairwise_service = PairwiseService(
        user_store=user_store,
        fetcher=fetcher,
        hybrid_scorer=hybrid_scorer,
        hard_filter=hard_filter,
    )
    app.state.locality_stats = LocalityStatsCache()
    logger.info(
        "services_wired",
        hard_requirement_policy=attribute_scorer.policy.value,
        hybrid_attribute_weight=hybrid_scorer.w_attr,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources."""
    settings = get_settings()

    # -- Startup --------------------------------------------------------- #
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
    )

    user_store = SqlUserStore(get_session_factory())
    backend = VertexVectorSearchBackend()
    build_services(app, user_store, backend, GeminiEmbeddingProvider())

    # Locality stats (best-effort; an empty cache is still served)
    try:
        await app.state.locality_stats.rebuild(user_store)
    except Exception:
        logger.exception("locality_stats_rebuild_failed")

    logger.info("startup_complete")

    yield

    # -- Shutdown -------------------------------------------------------- #
    logger.info("shutdown_begin")

    await backend.close()
    await dispose_engine()
    logger.info("database_pool_closed")

    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout."""

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title="Nestmate",
    description="Mutual roommate matching engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- Middleware (last added runs first) ------------------------------------ #

app.add_middleware(StructuredLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=30.0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Health-check endpoint ------------------------------------------------- #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Liveness probe; healthy whenever the process is running."""
    return {"status": "healthy"}


# -- API router ------------------------------------------------------------ #

from app.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api")
