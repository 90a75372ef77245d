"""
FastAPI scaffolding shared by the inventory services.

Subclasses register their own routes, report dependency states through
``_check_dependencies`` and hook process lifecycle through ``on_startup`` and
``on_shutdown``. Everything else (request correlation, access logs, ``/health``,
``/metrics`` and the error body) is handled here.
"""

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Dict, Optional
import time
import os

from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, get_request_id, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import CacheLayerException


SERVICE_VERSION = "1.0.0"

# Polled by health checkers and Prometheus; kept out of the access log
QUIET_PATHS = ("/health", "/metrics")


def rollup_status(dependencies: Dict[str, str]) -> str:
    """Overall status: ok when every dependency is healthy, down when every one is down."""
    states = set(dependencies.values())
    if not states or states == {"healthy"}:
        return "ok"
    if states == {"down"}:
        return "down"
    return "degraded"


def route_label(request: Request) -> str:
    """Template of the matched route, so ``/inventory/items/{sku}`` is one metric series."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description=f"Inventory Cache Layer - {service_name.title()} Service",
            version=SERVICE_VERSION,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )

        self._setup_middleware()
        self._setup_lifecycle()
        self._setup_routes()
        self._setup_error_handlers()

    async def on_startup(self):
        """Hook run once before the first request. Override in subclasses."""

    async def on_shutdown(self):
        """Hook run once when the server stops. Override in subclasses."""

    async def _check_dependencies(self) -> Dict[str, str]:
        """Dependency name to ``healthy`` / ``degraded`` / ``down``. Override in subclasses."""
        return {}

    def _setup_middleware(self):
        # Browsers only reach the API directly during local development
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )

        @self.app.middleware("http")
        async def correlate_and_time(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.perf_counter()

            try:
                response = await call_next(request)
                duration = time.perf_counter() - start_time
                endpoint = route_label(request)

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration=duration
                )

                log = self.logger.debug if request.url.path in QUIET_PATHS else self.logger.info
                log(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )

                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                clear_context()

    def _setup_lifecycle(self):
        @self.app.on_event("startup")
        async def startup():
            self.logger.info("Service starting", port=self.port, env=self.config.env)
            await self.on_startup()

        @self.app.on_event("shutdown")
        async def shutdown():
            await self.on_shutdown()
            self.logger.info("Service stopped", uptime_seconds=round(self._get_uptime(), 1))

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            """Liveness plus the state of each dependency."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)}
                )

            status = rollup_status(dependencies)
            self.metrics.record_health_check(status)
            return JSONResponse(
                status_code=503 if status == "down" else 200,
                content={
                    "service": self.service_name,
                    "status": status,
                    "uptime_seconds": self._get_uptime(),
                    "dependencies": dependencies,
                    "version": SERVICE_VERSION,
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(content=self.metrics.export(), media_type=CONTENT_TYPE_LATEST)

    def _setup_error_handlers(self):
        @self.app.exception_handler(CacheLayerException)
        async def cache_layer_exception_handler(request: Request, exc: CacheLayerException):
            # Client mistakes are warnings; missing data and dead dependencies are errors
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                path=request.url.path,
                code=exc.code,
                message=exc.message,
                details=exc.details
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(get_request_id()).model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "request_id": get_request_id(),
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    def _get_uptime(self) -> float:
        return time.time() - self._start_time

    def run(self):
        """Serve the app with uvicorn on the configured host and port."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
