import time

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from casegen.api.routes import api_router
from casegen.config.settings import settings
from casegen.core.database import create_tables
from casegen.core.dependencies import container
from casegen.core.logging_config import configure_logging

configure_logging(settings.log_level)

logger = structlog.get_logger()


async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        client_ip=request.client.host if request.client else None,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", method=request.method, path=request.url.path,
                 error_type=type(exc).__name__, error=str(exc), exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "timestamp": time.time()})


async def on_startup() -> None:
    create_tables()
    # Backstop sweep for image sessions whose expiry timer was missed
    container.session_store().start()
    logger.info("casegen started", api_prefix=settings.api_prefix, environment=settings.environment)


async def on_shutdown() -> None:
    container.dispose()
    logger.info("casegen stopped")


def create_app() -> FastAPI:
    """Build the casegen API: routes, CORS, request logging and lifecycle hooks"""
    app = FastAPI(
        title="casegen",
        description="Generate test case documents from Jira issues and screenshots",
        version="1.0.0",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        on_startup=[on_startup],
        on_shutdown=[on_shutdown],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)
    app.add_exception_handler(Exception, unhandled_exception)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port,
                reload=settings.debug, log_level=settings.log_level.lower())
