"""FastAPI request surface for the HR metrics engine.

Services are built once at startup and shared across requests.  Engine
errors are mapped to typed JSON payloads ``{"error": kind, "detail": text}``.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from hr_metrics.automation.scheduler import start_scheduler, stop_scheduler
from hr_metrics.bootstrap import Services, build_services
from hr_metrics.errors import ComputationError, DefinitionNotFound, ExportError, MetricsError
from hr_metrics.metrics.formatting import title_case
from hr_metrics.metrics.models import MetricFilters, MetricResult
from hr_metrics.metrics.service import ExportItem
from hr_metrics.observability.metrics import APP_INFO, COMPONENT_HEALTHY, REQUEST_DURATION, REQUESTS_TOTAL

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[MetricsError], int] = {
    DefinitionNotFound: 404,
    ComputationError: 502,
    ExportError: 422,
}


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class AlertRuleRequest(BaseModel):
    """Request body for POST /api/alerts."""

    alert_name: str
    metric_id: str
    operator: str
    threshold: float
    severity: Literal["info", "warning", "critical"] = "warning"
    is_active: bool = True


class AlertRuleUpdate(BaseModel):
    """Request body for PUT /api/alerts/{rule_id}. Omitted fields are unchanged."""

    alert_name: str | None = None
    metric_id: str | None = None
    operator: str | None = None
    threshold: float | None = None
    severity: Literal["info", "warning", "critical"] | None = None
    is_active: bool | None = None


class MetricSetRequest(BaseModel):
    """Selects a metric set: explicit ids, one category, or the whole registry."""

    metric_ids: list[str] | None = None
    category: str | None = None
    filters: dict[str, str] = Field(default_factory=dict)


class ExportRequest(MetricSetRequest):
    format: str = "csv"


class PushRequest(MetricSetRequest):
    target: Literal["dashboard", "finance"] = "dashboard"


class PushResponse(BaseModel):
    target: str
    status: str
    message: str
    metrics_sent: int
    response_status: int | None = None


class ComponentHealth(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    status: str
    metrics: int
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services once at startup, tear down on shutdown."""
    APP_INFO.info({"version": "0.1.0"})
    services = build_services()
    app.state.services = services

    try:
        await asyncio.to_thread(services.automation.warm_up_cache, compute_missing=False)
    except Exception:
        logger.exception("Cache warm-up at startup failed")

    start_scheduler(services.automation)
    yield
    stop_scheduler()
    services.close()
    logger.info("Shutting down HR metrics engine")


app = FastAPI(title="HR Analytics Metrics", lifespan=lifespan)


def _services(request: Request) -> Services:
    services: Services = request.app.state.services
    return services


def _observe(endpoint: str, status: str, start: float) -> None:
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)


@app.exception_handler(MetricsError)
async def metrics_error_handler(request: Request, exc: MetricsError) -> JSONResponse:
    status_code = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.warning("%s on %s: %s", exc.kind, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": str(exc)})


def _result_payload(result: MetricResult) -> dict[str, Any]:
    payload = result.model_dump(mode="json")
    payload["metric_id"] = result.metric_id
    return payload


def _filters_from_query(request: Request) -> MetricFilters:
    return MetricFilters.from_mapping(dict(request.query_params))


async def _collect(services: Services, body: MetricSetRequest) -> list[ExportItem]:
    metric_ids = body.metric_ids
    if metric_ids is None and body.category:
        metric_ids = [d.metric_id for d in services.metrics.registry.list_category(body.category)]
    return await asyncio.to_thread(services.metrics.collect, metric_ids, body.filters)


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Check the durable store, the HR data source and the ephemeral cache."""
    services = _services(request)
    components = [
        ComponentHealth(
            name="metrics_store",
            status="healthy" if await asyncio.to_thread(services.store.ping) else "unhealthy",
        ),
        ComponentHealth(
            name="hr_database",
            status="healthy" if await asyncio.to_thread(services.data_source.ping) else "unhealthy",
        ),
    ]
    cache_name = services.metrics.cache.backend_name
    components.append(ComponentHealth(name="cache", status="healthy", detail=f"backend: {cache_name}"))

    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    healthy_count = sum(1 for c in components if c.status == "healthy")
    if healthy_count == len(components):
        overall = "healthy"
    elif healthy_count == 0:
        overall = "unhealthy"
    else:
        overall = "degraded"
    return HealthResponse(status=overall, metrics=len(services.metrics.registry), components=components)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@app.get("/api/metrics/categories")
async def list_categories(request: Request) -> dict[str, Any]:
    registry = _services(request).metrics.registry
    categories = [
        {"id": category, "name": title_case(category), "metrics": len(registry.list_category(category))}
        for category in registry.categories()
    ]
    return {"categories": categories}


@app.get("/api/metrics/definitions")
async def list_definitions(request: Request, category: str | None = None) -> dict[str, Any]:
    registry = _services(request).metrics.registry
    definitions = registry.list_category(category) if category else registry.list_all()
    return {
        "definitions": [
            {
                "id": d.metric_id,
                "category": d.category,
                "name": d.name,
                "display_shape": str(d.display_shape),
                "description": d.description,
                "formula": d.formula,
            }
            for d in definitions
        ]
    }


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


@app.get("/api/metrics/summary")
async def metrics_summary(request: Request, category: str | None = None, period: str | None = None) -> dict[str, Any]:
    """Stored summaries, optionally narrowed to a category and YYYY-MM period."""
    results = await asyncio.to_thread(_services(request).metrics.cache.summary, category, period)
    return {"summaries": [_result_payload(r) for r in results]}


@app.get("/api/metrics/{category}/{name}")
async def get_metric(request: Request, category: str, name: str, refresh: bool = False) -> dict[str, Any]:
    """Compute (or read from cache) one metric. Query-string filters are allow-listed."""
    services = _services(request)
    filters = _filters_from_query(request)
    start = time.monotonic()
    try:
        if refresh:
            refreshed = await asyncio.to_thread(services.metrics.refresh, category, name, filters)
            result = refreshed.result
        else:
            result = await asyncio.to_thread(services.metrics.get, category, name, filters)
    except MetricsError:
        _observe("/api/metrics/{category}/{name}", "error", start)
        raise
    _observe("/api/metrics/{category}/{name}", "success", start)
    payload = _result_payload(result)
    payload["staleness_seconds"] = await asyncio.to_thread(services.metrics.cache.staleness, result.metric_id)
    return payload


@app.get("/api/metrics/{category}/{name}/trends")
async def metric_trends(
    request: Request,
    category: str,
    name: str,
    periods: int = Query(default=12, ge=1, le=120),
) -> dict[str, Any]:
    services = _services(request)
    definition = services.metrics.registry.get(category, name)
    filters = MetricFilters.from_mapping({k: v for k, v in request.query_params.items() if k != "periods"})
    history = await asyncio.to_thread(services.metrics.cache.history, definition.metric_id, periods, filters)
    return {"metric_id": definition.metric_id, "periods": [_result_payload(r) for r in history]}


@app.post("/api/metrics/batch-calculate")
async def batch_calculate(request: Request) -> dict[str, Any]:
    start = time.monotonic()
    outcome = await _services(request).automation.process_batch()
    _observe("/api/metrics/batch-calculate", outcome.status, start)
    return outcome.as_dict()


@app.post("/api/metrics/cache/warm-up")
async def cache_warm_up(request: Request) -> dict[str, Any]:
    return await asyncio.to_thread(_services(request).automation.warm_up_cache)


@app.delete("/api/metrics/cache")
async def cache_clear(request: Request, pattern: str = "*") -> dict[str, int]:
    removed = await asyncio.to_thread(_services(request).metrics.cache.clear, pattern)
    return {"removed": removed}


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@app.get("/api/alerts")
async def list_alerts(request: Request, active_only: bool = False) -> dict[str, Any]:
    rules = await asyncio.to_thread(_services(request).alerts.list_rules, active_only)
    return {"alerts": rules}


@app.post("/api/alerts", status_code=201)
async def create_alert(request: Request, body: AlertRuleRequest) -> dict[str, Any]:
    try:
        rule = await asyncio.to_thread(_services(request).alerts.create_rule, **body.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return dict(rule)


@app.put("/api/alerts/{rule_id}")
async def update_alert(request: Request, rule_id: int, body: AlertRuleUpdate) -> dict[str, Any]:
    fields = body.model_dump(exclude_none=True)
    try:
        rule = await asyncio.to_thread(_services(request).alerts.update_rule, rule_id, **fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Alert rule {rule_id} not found")
    return dict(rule)


@app.delete("/api/alerts/{rule_id}", status_code=204)
async def delete_alert(request: Request, rule_id: int) -> Response:
    if not await asyncio.to_thread(_services(request).alerts.delete_rule, rule_id):
        raise HTTPException(status_code=404, detail=f"Alert rule {rule_id} not found")
    return Response(status_code=204)


@app.post("/api/alerts/process")
async def process_alerts(request: Request) -> dict[str, Any]:
    outcome = await asyncio.to_thread(_services(request).alerts.process_alerts)
    return outcome.as_dict()


# ---------------------------------------------------------------------------
# Export and push
# ---------------------------------------------------------------------------


@app.post("/api/export")
async def export_metrics(request: Request, body: ExportRequest) -> Response:
    """Render a metric set and return the artifact as a download."""
    services = _services(request)
    start = time.monotonic()
    items = await _collect(services, body)
    try:
        artifact = await asyncio.to_thread(
            services.exporter.export, items, body.format, MetricFilters.from_mapping(body.filters)
        )
    except ExportError:
        _observe("/api/export", "error", start)
        raise
    _observe("/api/export", "success", start)
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


@app.get("/api/export/logs")
async def export_logs(request: Request, limit: int = Query(default=50, ge=1, le=500)) -> dict[str, Any]:
    logs = await asyncio.to_thread(_services(request).exporter.export_logs, limit)
    return {"logs": logs}


@app.post("/api/push", response_model=PushResponse)
async def push_metrics(request: Request, body: PushRequest) -> PushResponse:
    services = _services(request)
    items = await _collect(services, body)
    try:
        outcome = await services.pusher.push(items, body.target, MetricFilters.from_mapping(body.filters))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PushResponse(
        target=outcome.target,
        status="success" if outcome.success else "error",
        message=outcome.message,
        metrics_sent=outcome.metrics_sent,
        response_status=outcome.response_status,
    )


@app.get("/api/push/logs")
async def push_logs(
    request: Request, system: str | None = None, limit: int = Query(default=50, ge=1, le=500)
) -> dict[str, Any]:
    logs = await asyncio.to_thread(_services(request).pusher.integration_logs, system, limit)
    return {"logs": logs}


@app.get("/api/automation/status")
async def automation_status(request: Request) -> dict[str, Any]:
    return await asyncio.to_thread(_services(request).automation.status)
