"""
Base service class for User Profile services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional
import time
import os

from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import ServiceConfig, get_config
from shared.logging import clear_context, configure_logging, get_logger, request_id_var, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.errors import AccessLayerException, ErrorResponse, NotFoundError, ValidationError

REQUEST_ID_HEADER = "X-Request-ID"
UNMATCHED_ROUTE = "unmatched"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
}


class BaseService:
    """Base service class with common functionality."""

    def __init__(
        self,
        service_name: str,
        port: int,
        config: Optional[ServiceConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        # Configure logging
        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = metrics or get_metrics_collector(service_name)
        self._start_time = time.time()

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()
        self._setup_error_handlers()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"User Profile - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Run startup and shutdown hooks around the application's life."""
        try:
            await self.startup()
        except Exception as e:
            self.logger.critical("Service failed to start", error=str(e))
            raise
        self.logger.info("Service started", port=self.port)
        try:
            yield
        finally:
            await self.shutdown()
            self.logger.info("Service stopped")

    async def startup(self):
        """Acquire resources. Override in subclasses; raising aborts boot."""

    async def shutdown(self):
        """Release resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        # CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=[self.config.frontend_url],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Request id and timing middleware
        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            clear_context()
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            start_time = time.time()

            try:
                response = await call_next(request)
            except Exception:
                self._log_request(request, 500, time.time() - start_time)
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            for name, value in SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
            self._log_request(request, response.status_code, time.time() - start_time)
            return response

    def _log_request(self, request: Request, status_code: int, duration: float):
        self.metrics.record_http_request(
            method=request.method,
            endpoint=self._route_template(request),
            status_code=status_code,
            duration=duration
        )
        self.logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2)
        )

    @staticmethod
    def _route_template(request: Request) -> str:
        """Path template of the matched route, or ``unmatched``."""
        route = request.scope.get("route")
        return getattr(route, "path", UNMATCHED_ROUTE)

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "error": str(e)
                    }
                )

            status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)
            return {
                "service": self.service_name,
                "status": status,
                "message": "Server is running",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=self.metrics.export(),
                media_type=CONTENT_TYPE_LATEST
            )

    def _setup_error_handlers(self):
        """Translate every failure into the JSON error envelope."""

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            """Handle AccessLayerException."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Access layer error",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return self._error_response(exc)

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            """Report request validation failures per field."""
            errors = [
                {
                    "field": ".".join(str(part) for part in error["loc"] if part != "body"),
                    "message": error["msg"],
                }
                for error in exc.errors()
            ]
            self.metrics.record_error("VALIDATION_ERROR")
            return self._error_response(ValidationError(details={"errors": errors}))

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            """Handle framework HTTP errors, notably unknown routes."""
            if exc.status_code == 404:
                error = NotFoundError(details={"path": request.url.path})
            else:
                error = AccessLayerException("HTTP_ERROR", str(exc.detail), status_code=exc.status_code)
            return self._error_response(error, headers=getattr(exc, "headers", None))

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    message="Internal server error",
                    error="INTERNAL_ERROR",
                    request_id=request_id_var.get(),
                ).model_dump()
            )

    @staticmethod
    def _error_response(exc: AccessLayerException, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response().model_dump(),
            headers=headers
        )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
