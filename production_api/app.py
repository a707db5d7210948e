"""
FastAPI application factory.

``create_app()`` wires one shared ProductionEngine into ``app.state``,
registers the error translation and mounts the versioned routers.  Tests
pass a ready engine; deployments let the factory bootstrap one from
configuration.
"""
import time
import uuid

from fastapi import FastAPI, Request

from production_api.errors import register_error_handlers
from production_api.routes import api_router
from production_config import EngineConfig, bootstrap_engine
from production_kernel import __version__
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.services.production_engine import ProductionEngine

logger = get_logger("api")

CORRELATION_HEADER = "X-Correlation-ID"


def create_app(
    config: EngineConfig | None = None,
    engine: ProductionEngine | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Production Workflow Engine",
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    app.state.engine = engine or bootstrap_engine(config)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        t0 = time.monotonic()
        with LogContext.bind(correlation_id=correlation_id):
            response = await call_next(request)
            logger.info(
                "request_completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    @app.get("/health")
    def health():
        return {"status": "healthy", "version": __version__}

    register_error_handlers(app)
    app.include_router(api_router)
    return app
