"""Control API for runtime management using FastAPI."""
from typing import Optional, List
from fastapi import FastAPI, HTTPException, Query, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
import logging
import time

from telemetry_reporter.events import EventBus, default_bus
from telemetry_reporter.history import metrics_history
from telemetry_reporter.reporter import build_metric_name
from telemetry_reporter.units import native_time

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class HistoryPointResponse(BaseModel):
    """One reconstructed history point."""
    label: Optional[str]
    time: int
    measurement: float


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Emits an ``http.request.stop`` event for every request."""

    def __init__(self, app, bus: Optional[EventBus] = None):
        super().__init__(app)
        self.bus = bus if bus is not None else default_bus

    async def dispatch(self, request, call_next):
        started = native_time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            self.bus.execute(
                "http.request.stop",
                {"duration": native_time() - started},
                {
                    "method": request.method,
                    "route": getattr(route, "path", None),
                    "path": request.url.path,
                    "status": status,
                }
            )


class ControlAPI:
    """FastAPI-based control API for the reporter."""

    def __init__(self, reporter, store, self_metrics=None, bus: Optional[EventBus] = None, history_window: int = 3600):
        """
        Initialize control API.

        Args:
            reporter: Running Reporter
            store: Store the reporter writes to (queried for history)
            self_metrics: Optional SelfMetrics served on /metrics
            bus: Event bus for request telemetry
            history_window: Default seconds of history to return
        """
        self.reporter = reporter
        self.store = store
        self.self_metrics = self_metrics
        self.history_window = history_window
        self.app = FastAPI(title="Telemetry Reporter Control API")
        self.app.add_middleware(TelemetryMiddleware, bus=bus if bus is not None else reporter.bus)

        self._setup_routes()

    def find_definition(self, metric: str, kind: Optional[str] = None):
        """First definition with the given dotted name (and kind, if given)."""
        for definition in self.reporter.metrics:
            if definition.full_name == metric and (kind is None or definition.kind == kind):
                return definition
        return None

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Current reporter status."""
            return self.reporter.status()

        @self.app.post("/flush")
        def flush():
            """Drain the buffer into the store now."""
            if not self.reporter.running:
                raise HTTPException(status_code=503, detail="Reporter is not running")

            points = self.reporter.flush()
            logger.info(f"Manual flush wrote {points} points")
            return {"status": "flushed", "points": points, "timestamp": time.time()}

        @self.app.get("/definitions")
        async def definitions():
            """Registered metric definitions."""
            return [
                {
                    "kind": d.kind,
                    "name": d.full_name,
                    "metric_name": build_metric_name(self.reporter.prefix, d),
                    "event_name": ".".join(d.event_name),
                    "unit": list(d.unit) if isinstance(d.unit, tuple) else d.unit,
                    "tags": list(d.tags),
                    "description": d.description,
                }
                for d in self.reporter.metrics
            ]

        @self.app.get("/history", response_model=List[HistoryPointResponse])
        def history(
            metric: str,
            kind: Optional[str] = None,
            history_s: Optional[int] = Query(default=None, gt=0)
        ):
            """Reconstructed history for one metric definition."""
            definition = self.find_definition(metric, kind)
            if definition is None:
                raise HTTPException(status_code=404, detail=f"Metric '{metric}' is not defined")

            points = metrics_history(
                definition,
                self.store,
                prefix=self.reporter.prefix,
                history=history_s or self.history_window
            )
            return [
                HistoryPointResponse(label=p.label, time=p.time, measurement=p.measurement)
                for p in points
            ]

        @self.app.get("/metrics")
        async def prometheus_metrics():
            """Reporter self-metrics in Prometheus text format."""
            if self.self_metrics is None:
                raise HTTPException(status_code=404, detail="Self-metrics are disabled")
            return Response(content=self.self_metrics.exposition(), media_type=CONTENT_TYPE_LATEST)

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
