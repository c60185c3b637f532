"""FastAPI application main module.

Builds the StoreRec HTTP service around a ``RecommendationEngine``. The
module-level ``app`` is configured from ``STOREREC_*`` environment variables
and optionally preloads events and products from CSV files.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storerec import __version__
from storerec.api.logging_config import RequestLoggingMiddleware, setup_logging
from storerec.api.routes import recommend
from storerec.config import RecommendationConfig
from storerec.exceptions import StoreRecException
from storerec.recommender.engine import RecommendationEngine, build_engine
from storerec.recommender.stores import (
    InMemoryCacheStore,
    InMemoryCatalog,
    InMemoryEventStore,
)
from storerec.recommender.utils import load_catalog_csv, load_events_csv

# Configure module logger
logger = logging.getLogger(__name__)


def engine_from_config(config: RecommendationConfig) -> RecommendationEngine:
    """Create an engine over in-memory stores, seeded from CSV when configured."""
    events = load_events_csv(config.events_csv) if config.events_csv else []
    products = load_catalog_csv(config.catalog_csv) if config.catalog_csv else []
    logger.info(
        "Loaded recommendation data",
        extra={"num_events": len(events), "num_products": len(products)},
    )
    return build_engine(
        InMemoryEventStore(events),
        InMemoryCatalog(products),
        InMemoryCacheStore(),
        config,
    )


def create_app(
    engine: Optional[RecommendationEngine] = None,
    config: Optional[RecommendationConfig] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Engine serving the routes. Built from ``config`` when omitted.
        config: Engine configuration. Read from the environment when omitted.

    Returns:
        Configured FastAPI application.
    """
    if engine is None:
        engine = engine_from_config(config or RecommendationConfig.from_env())

    app = FastAPI(
        title="StoreRec API",
        description="Product recommendation service for an online store",
        version=__version__,
    )
    app.state.engine = engine
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(recommend.router)

    @app.exception_handler(StoreRecException)
    async def storerec_exception_handler(
        request: Request, exc: StoreRecException
    ) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                exc.message,
                extra={"path": str(request.url.path), "error_type": type(exc).__name__},
            )
        else:
            logger.warning(
                exc.message,
                extra={"path": str(request.url.path), "error_type": type(exc).__name__},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "InvalidInputError",
                "message": "Invalid request parameters",
                "details": {"errors": jsonable_errors(exc)},
            },
        )

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Example:
            >>> response = client.get("/ping")
            >>> assert response.json() == {"status": "ok"}
        """
        return {"status": "ok"}

    @app.get("/status")
    def status() -> Dict[str, Any]:
        """Service version, engine settings and call metrics."""
        engine: RecommendationEngine = app.state.engine
        return {
            "version": __version__,
            "single_flight": engine.single_flight is not None,
            "metrics": engine.metrics.get_metrics(),
        }

    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
        for error in exc.errors()
    ]


_config = RecommendationConfig.from_env()
setup_logging(_config.log_level)
app = create_app(config=_config)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storerec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
