"""
FastAPI application for spreadsheet calculation services.

This module provides the REST API endpoints for publishing spreadsheet
models as services and executing them with caller inputs.

API Endpoints:
    - GET /health: Health check
    - GET /services: List published services
    - GET /services/{service_id}: Get a service's parameter schema
    - POST /services/{service_id}: Publish a service (definition + model)
    - DELETE /services/{service_id}: Delete a service
    - POST /services/{service_id}/execute: Execute with a JSON body
    - GET /services/{service_id}/execute: Execute with query parameters
    - POST /services/{service_id}/validate: Validate inputs only
    - DELETE /cache, DELETE /cache/{service_id}: Drop cached models
    - GET /cache/stats: Workbook cache statistics
    - GET /analytics, GET /analytics/{service_id}: Request analytics
    - GET /logs: Recent execution records

Example:
    To run the server:
        uvicorn spreadcalc.main:app --reload

    Or programmatically:
        from spreadcalc.main import run_server
        run_server()
"""

import json
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any

import uvicorn
from fastapi import Body, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spreadcalc import __version__
from spreadcalc.config import configure_logging, settings
from spreadcalc.exceptions.calculation_exceptions import (
    InvalidServiceDefinitionError,
    SpreadCalcError,
)
from spreadcalc.models.execution_models import ExecutionError, ExecutionRequest
from spreadcalc.models.parameter_models import ServiceDescriptor
from spreadcalc.services.calculation_service import CalculationService
from spreadcalc.services.service_store import FileServiceStore, build_descriptor
from spreadcalc.services.telemetry import (
    InMemoryTelemetrySink,
    JsonLinesTelemetrySink,
    TelemetrySink,
)

logger = logging.getLogger(__name__)

calculation_service: CalculationService | None = None
service_store: FileServiceStore | None = None
recent_requests: InMemoryTelemetrySink | None = None

STATUS_CODE_MAP = {
    "VALIDATION_ERROR": 400,
    "INVALID_SERVICE_DEFINITION": 400,
    "INVALID_CELL_ADDRESS": 400,
    "NOT_FOUND": 404,
    "CALCULATION_ERROR": 500,
}

# Query parameters that are execution options, never inputs
RESERVED_QUERY_KEYS = {"nocache"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the calculation service, the service store and the telemetry
    sinks on startup, and drains pending telemetry on shutdown.

    Args:
        app: The FastAPI application instance.
    """
    global calculation_service, service_store, recent_requests
    configure_logging()

    recent_requests = InMemoryTelemetrySink(settings.RECENT_LOGS_MAX)
    sinks: list[TelemetrySink] = [recent_requests]
    if settings.TELEMETRY_FILE_ENABLED:
        sinks.append(JsonLinesTelemetrySink(settings.get_logs_path()))

    calculation_service = CalculationService.from_settings(settings, sinks=sinks)
    service_store = FileServiceStore(
        settings.get_services_path(),
        on_change=calculation_service.invalidate,
    )
    logger.info("Serving calculation services from %s", service_store.services_dir)

    yield

    calculation_service.result_builder.recorder.shutdown()
    calculation_service = None
    service_store = None
    recent_requests = None


app = FastAPI(
    title="Spreadsheet Calculation Service",
    description="""
    Publish spreadsheet models as callable calculation services, over REST
    and MCP (Model Context Protocol).

    ## Features

    - **Typed parameters**: Inputs are matched by name or title, coerced to
      number, string, boolean or array, and checked against bounds and
      allowed values before anything is written
    - **Percentages**: `"5%"`, `5` and `0.05` all mean 5 percent
    - **Model cache**: Compiled models are reused per service for 30 minutes
    - **Telemetry**: Every execution is recorded for analytics

    ## Architecture

    - **Service Layer**: Validation, caching and orchestration decoupled from transport
    - **Adapters**: openpyxl for compiled models, python-calamine for inspection
    - **Dual Protocol**: Same service exposed via REST and MCP
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service() -> CalculationService:
    """
    Get the calculation service instance.

    Raises:
        HTTPException: If the service is not initialized.
    """
    if calculation_service is None:
        raise HTTPException(
            status_code=503,
            detail="Calculation service is not initialized",
        )
    return calculation_service


def get_store() -> FileServiceStore:
    """
    Get the service store instance.

    Raises:
        HTTPException: If the store is not initialized.
    """
    if service_store is None:
        raise HTTPException(
            status_code=503,
            detail="Service store is not initialized",
        )
    return service_store


def get_recent_requests() -> InMemoryTelemetrySink:
    """
    Get the in-memory telemetry sink, after delivering queued records.

    Raises:
        HTTPException: If the service is not initialized.
    """
    service = get_service()
    if recent_requests is None:
        raise HTTPException(
            status_code=503,
            detail="Telemetry is not initialized",
        )
    service.result_builder.recorder.flush(timeout=settings.TELEMETRY_FLUSH_TIMEOUT_SECONDS)
    return recent_requests


@app.exception_handler(SpreadCalcError)
async def handle_spreadcalc_error(request: Request, error: SpreadCalcError) -> JSONResponse:
    """
    Convert SpreadCalcError to appropriate HTTP response.

    Args:
        request: The failed request.
        error: The SpreadCalcError to convert.

    Returns:
        JSONResponse with appropriate status code and error payload.
    """
    return JSONResponse(
        status_code=STATUS_CODE_MAP.get(error.error_code, 500),
        content=error.to_dict(),
    )


def _request_info(request: Request) -> dict[str, Any]:
    return {
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
        "userAgent": request.headers.get("user-agent"),
    }


def _execution_response(result: Any) -> JSONResponse:
    status_code = 200
    if isinstance(result, ExecutionError):
        status_code = STATUS_CODE_MAP.get(result.error, 500)
    return JSONResponse(status_code=status_code, content=result.to_dict())


def _describe(descriptor: ServiceDescriptor) -> dict[str, Any]:
    return descriptor.model_dump(mode="json")


def parse_query_value(value: str) -> Any:
    """
    Parse a query string value where its type is unambiguous.

    ``"true"`` and ``"false"`` become booleans and numeric strings become
    numbers; anything else stays a string for the validator to coerce.
    """
    if value == "true":
        return True
    if value == "false":
        return False
    if value.lstrip("+-").isdigit():
        return int(value)
    try:
        number = float(value)
    except ValueError:
        return value
    return number if math.isfinite(number) else value


@app.get(
    "/health",
    tags=["System"],
    summary="Health check",
    response_model=dict,
)
async def health_check() -> dict[str, Any]:
    """
    Check the health status of the service.

    Returns:
        Dictionary containing status and timestamp.
    """
    return {
        "status": "healthy",
        "service": "Spreadsheet Calculation Service",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get(
    "/services",
    tags=["Services"],
    summary="List services",
)
async def list_services() -> list[dict[str, Any]]:
    """
    List every published service with its parameter schema.

    Returns:
        List of service schemas, sorted by id.
    """
    store = get_store()
    return [_describe(store.get(service_id)) for service_id in store.list_ids()]


@app.get(
    "/services/{service_id}",
    tags=["Services"],
    summary="Get service schema",
)
async def get_service_schema(service_id: str) -> dict[str, Any]:
    """
    Get the input and output definitions of a service.

    Args:
        service_id: The service to describe.

    Returns:
        The service schema, without the model.
    """
    return _describe(get_store().get(service_id))


@app.post(
    "/services/{service_id}",
    tags=["Services"],
    summary="Publish a service",
    status_code=201,
)
async def publish_service(
    service_id: str,
    definition: Annotated[str, Form(description="Service definition as JSON")],
    model: Annotated[UploadFile, File(description="Spreadsheet model (.xlsx)")],
) -> dict[str, Any]:
    """
    Publish or replace a service.

    The definition is checked against the uploaded model before it is
    stored, and any cached model of a previous version is dropped.

    Args:
        service_id: Id to publish under.
        definition: JSON object with ``name``, ``inputs`` and ``outputs``.
        model: The spreadsheet model file.

    Returns:
        The stored service schema.
    """
    store = get_store()

    try:
        parsed = json.loads(definition)
    except ValueError as e:
        raise InvalidServiceDefinitionError(service_id, [f"Definition is not valid JSON: {e}"]) from e
    if not isinstance(parsed, dict):
        raise InvalidServiceDefinitionError(service_id, ["Definition must be a JSON object"])

    descriptor = build_descriptor(service_id, parsed, await model.read())
    return _describe(store.save(descriptor))


@app.delete(
    "/services/{service_id}",
    tags=["Services"],
    summary="Delete a service",
)
async def delete_service(service_id: str) -> dict[str, Any]:
    """
    Delete a service and drop its cached model.

    Args:
        service_id: The service to delete.
    """
    get_store().delete(service_id)
    return {"success": True, "serviceId": service_id}


@app.post(
    "/services/{service_id}/execute",
    tags=["Execution"],
    summary="Execute a service",
)
def execute_service(
    service_id: str,
    request: Request,
    body: Annotated[dict[str, Any] | None, Body()] = None,
) -> JSONResponse:
    """
    Execute a service with inputs from a JSON body.

    The body is either ``{"inputs": {...}}`` or a flat map of inputs. The
    wrapped form may add ``"nocache": true`` to bypass the workbook cache.
    Validation errors return 400 and calculation errors 500, both with
    the ``{"error", "message", "details"}`` payload.

    Args:
        service_id: The service to execute.
        request: The incoming request, recorded with the execution.
        body: Request body.
    """
    body = body or {}
    if isinstance(body.get("inputs"), dict):
        inputs, nocache = body["inputs"], body.get("nocache") is True
    else:
        inputs, nocache = body, False

    payload = ExecutionRequest(inputs=inputs, request_info=_request_info(request), nocache=nocache)
    descriptor = get_store().get(service_id)
    result = get_service().execute(descriptor, payload.inputs, payload.request_info, nocache=payload.nocache)
    return _execution_response(result)


@app.get(
    "/services/{service_id}/execute",
    tags=["Execution"],
    summary="Execute a service with query parameters",
)
def execute_service_query(service_id: str, request: Request) -> JSONResponse:
    """
    Execute a service with inputs from the query string.

    Values are parsed as booleans or numbers when unambiguous. Keys
    starting with ``_`` are reserved and ignored, and ``nocache=true``
    bypasses the workbook cache.

    Args:
        service_id: The service to execute.
        request: The incoming request.
    """
    inputs = {
        key: parse_query_value(value)
        for key, value in request.query_params.items()
        if not key.startswith("_") and key not in RESERVED_QUERY_KEYS
    }
    nocache = request.query_params.get("nocache") == "true"

    payload = ExecutionRequest(inputs=inputs, request_info=_request_info(request), nocache=nocache)
    descriptor = get_store().get(service_id)
    result = get_service().execute(descriptor, payload.inputs, payload.request_info, nocache=payload.nocache)
    return _execution_response(result)


@app.post(
    "/services/{service_id}/validate",
    tags=["Execution"],
    summary="Validate inputs",
)
def validate_inputs(
    service_id: str,
    body: Annotated[dict[str, Any] | None, Body()] = None,
) -> dict[str, Any]:
    """
    Validate inputs without executing the service.

    Args:
        service_id: The service whose schema is used.
        body: ``{"inputs": {...}}`` or a flat map of inputs.

    Returns:
        ``{"valid": true, "inputs": [...]}`` or ``{"valid": false, "error": {...}}``.
    """
    body = body or {}
    inputs = body["inputs"] if isinstance(body.get("inputs"), dict) else body

    descriptor = get_store().get(service_id)
    return get_service().validate(descriptor, inputs).to_dict()


@app.delete(
    "/cache",
    tags=["Cache"],
    summary="Clear the workbook cache",
)
async def clear_cache() -> dict[str, Any]:
    """Drop every cached model."""
    return {"success": True, "cleared": get_service().invalidate()}


@app.delete(
    "/cache/{service_id}",
    tags=["Cache"],
    summary="Clear one service's cached model",
)
async def clear_service_cache(service_id: str) -> dict[str, Any]:
    """
    Drop the cached model of one service.

    Args:
        service_id: The service to evict.
    """
    return {"success": True, "cleared": get_service().invalidate(service_id)}


@app.get(
    "/cache/stats",
    tags=["Cache"],
    summary="Workbook cache statistics",
)
async def cache_stats() -> dict[str, Any]:
    """Get cache size, policy and hit counters."""
    return get_service().cache.stats()


@app.get(
    "/analytics",
    tags=["Analytics"],
    summary="Request analytics",
)
async def analytics() -> dict[str, Any]:
    """Summarize recent executions of all services."""
    return get_recent_requests().analytics()


@app.get(
    "/analytics/{service_id}",
    tags=["Analytics"],
    summary="Request analytics for one service",
)
async def service_analytics(service_id: str) -> dict[str, Any]:
    """
    Summarize recent executions of one service.

    Args:
        service_id: The service to summarize.
    """
    return {"serviceId": service_id, **get_recent_requests().analytics(service_id)}


@app.get(
    "/logs",
    tags=["Analytics"],
    summary="Recent execution records",
)
async def recent_logs(
    service_id: Annotated[str | None, Query(description="Only records of this service")] = None,
    status: Annotated[str | None, Query(description="Only 'success' or 'error' records")] = None,
    limit: Annotated[int, Query(ge=1, le=1000, description="Maximum number of records")] = 100,
) -> list[dict[str, Any]]:
    """
    Get recent execution records, newest first.

    Args:
        service_id: Only records of this service.
        status: Only records with this status.
        limit: Maximum number of records.
    """
    return get_recent_requests().recent(service_id=service_id, status=status, limit=limit)


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
) -> None:
    """
    Run the FastAPI server.

    Args:
        host: Host to bind to. Defaults to ``settings.HOST``.
        port: Port to listen on. Defaults to ``settings.PORT``.
        reload: Whether to enable auto-reload. Defaults to False.

    Example:
        from spreadcalc.main import run_server
        run_server(host="127.0.0.1", port=8080)
    """
    uvicorn.run(
        "spreadcalc.main:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
    )


if __name__ == "__main__":
    run_server()
