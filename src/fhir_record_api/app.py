"""FastAPI application exposing FHIR parsing, conversion and validation.

Quick start (run the server)::

    uvicorn fhir_record_api.app:app --reload

Core endpoints (REST):

    GET  /health                          Basic health probe
    POST /api/parser/parse                Parse a resource, extract metadata
    POST /api/parser/convert              Convert raw body between json/xml
    POST /api/validation/validate         Validate a resource (JSON envelope)
    POST /api/validation/validate/json    Validate a raw JSON body
    POST /api/validation/validate/xml     Validate a raw XML body
    GET  /api/validation/version          Current and supported FHIR versions
    GET  /metrics/performance             Endpoint and operation metrics
    POST /metrics/reset                   Reset metrics
    POST /mcp                             MCP message endpoint

Example: parse a patient::

    curl -X POST http://localhost:8000/api/parser/parse \
         -H "Content-Type: application/json" \
         -d '{"resource_content": "{\\"resourceType\\": \\"Patient\\", \\"id\\": \\"p1\\"}"}'

Example: convert JSON to XML::

    curl -X POST "http://localhost:8000/api/parser/convert?from_format=json&to_format=xml" \
         --data-binary @patient.json

Example: validate raw XML against R5 with a profile::

    curl -X POST "http://localhost:8000/api/validation/validate/xml?fhir_version=R5&profile_url=http://example.org/p" \
         -H "Content-Type: application/fhir+xml" --data-binary @patient.xml

Status codes:
    * 400 for empty content, failed parses and failed conversions.
    * Validation always answers 200; validity is in the body.
    * 404 and 500 are wrapped with JSON payloads.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import FhirOptions
from .dispatcher import verify_bindings
from .exceptions import FhirRecordError
from .mcp_fastapi_integration import mount_mcp_server
from .models import (
    JSON_CONTENT_TYPE,
    XML_CONTENT_TYPE,
    ContentFormat,
    FhirVersion,
    ParseRequest,
    ValidationRequest,
)
from .monitoring import get_monitor
from .parser_service import FhirParserService
from .validation_service import FhirValidationService

logger = logging.getLogger(__name__)

verify_bindings()


@lru_cache(maxsize=1)
def get_options() -> FhirOptions:
    return FhirOptions.from_env()


@lru_cache(maxsize=1)
def get_parser_service() -> FhirParserService:
    return FhirParserService(get_options())


@lru_cache(maxsize=1)
def get_validation_service() -> FhirValidationService:
    return FhirValidationService(get_options())


app = FastAPI(
    title="FHIR Record API",
    version=__version__,
    description="API for parsing, converting and validating FHIR R4/R5 resources",
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.middleware("http")
async def monitor_requests(request: Request, call_next):
    """Record per-endpoint latency and add timing headers."""
    start_time = time.time()
    response = await call_next(request)
    response_time = time.time() - start_time

    endpoint = f"{request.method} {request.url.path}"
    get_monitor().record_endpoint_request(endpoint, response_time, response.status_code)

    response.headers["X-Response-Time"] = f"{response_time:.3f}s"
    response.headers["X-API-Version"] = __version__
    return response


class ParseRequestBody(BaseModel):
    """Request model for the parse endpoint."""

    resource_content: str = Field("", description="FHIR resource as JSON or XML text")
    content_type: str = Field(
        JSON_CONTENT_TYPE, description="application/fhir+json or application/fhir+xml"
    )
    fhir_version: Optional[str] = Field(
        None, description="FHIR version override (R4 or R5)"
    )


class ValidationRequestBody(BaseModel):
    """Request model for the validate endpoint."""

    resource_content: str = Field("", description="FHIR resource as JSON or XML text")
    content_type: str = Field(
        JSON_CONTENT_TYPE, description="application/fhir+json or application/fhir+xml"
    )
    profile_url: Optional[str] = Field(
        None, description="Profile URL (not checked; see profile policy)"
    )
    fhir_version: Optional[str] = Field(
        None, description="FHIR version override (R4 or R5)"
    )
    strict_validation: Optional[bool] = Field(
        None, description="Force strict parsing for this request"
    )


def _require_content(content: Optional[str], what: str = "Resource content") -> None:
    if content is None or not content.strip():
        raise HTTPException(status_code=400, detail=f"{what} is required")


async def _read_body(request: Request) -> str:
    body = await request.body()
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise HTTPException(
            status_code=400, detail=f"Request body must be UTF-8: {e}"
        ) from e


@app.get("/health")
def health(options: FhirOptions = Depends(get_options)) -> Dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "fhir_version": options.version.value,
        "api_version": __version__,
    }


@app.post("/api/parser/parse")
async def parse_resource(
    body: ParseRequestBody,
    service: FhirParserService = Depends(get_parser_service),
):
    """Parse a resource and extract its metadata.

    Example::

        curl -X POST http://localhost:8000/api/parser/parse \
             -H "Content-Type: application/json" \
             -d '{"resource_content": "<Patient xmlns=\\"http://hl7.org/fhir\\"/>",
                  "content_type": "application/fhir+xml"}'
    """
    _require_content(body.resource_content)
    logger.info("Parsing FHIR resource with content type %s", body.content_type)

    result = await service.parse(
        ParseRequest(
            resource_content=body.resource_content,
            content_type=body.content_type,
            fhir_version_override=body.fhir_version,
        )
    )
    if not result.success:
        return JSONResponse(status_code=400, content=result.to_dict())
    return result.to_dict()


@app.post("/api/parser/convert")
async def convert_resource(
    request: Request,
    from_format: Optional[str] = Query(None, description="Source format: json or xml"),
    to_format: Optional[str] = Query(None, description="Target format: json or xml"),
    service: FhirParserService = Depends(get_parser_service),
) -> Response:
    """Convert the raw request body between JSON and XML."""
    if not from_format or not from_format.strip() or not to_format or not to_format.strip():
        raise HTTPException(
            status_code=400,
            detail="Both from_format and to_format query parameters are required",
        )
    content = await _read_body(request)
    _require_content(content, "Request body")

    try:
        converted = await service.convert_format(content, from_format, to_format)
        media_type = ContentFormat.from_name(to_format).content_type
    except FhirRecordError as e:
        logger.error("Format conversion failed: %s", e)
        return JSONResponse(status_code=400, content={"error": str(e)})

    return Response(content=converted, media_type=media_type)


@app.post("/api/validation/validate")
async def validate_resource(
    body: ValidationRequestBody,
    service: FhirValidationService = Depends(get_validation_service),
) -> Dict[str, Any]:
    """Validate a resource submitted inside a JSON envelope."""
    _require_content(body.resource_content)
    logger.info("Validating FHIR resource with content type %s", body.content_type)

    result = await service.validate(
        ValidationRequest(
            resource_content=body.resource_content,
            content_type=body.content_type,
            profile_url=body.profile_url,
            fhir_version_override=body.fhir_version,
            strict_validation=body.strict_validation,
        )
    )
    return result.to_dict()


async def _validate_raw(
    request: Request,
    content_type: str,
    fhir_version: Optional[str],
    profile_url: Optional[str],
    service: FhirValidationService,
) -> Dict[str, Any]:
    content = await _read_body(request)
    _require_content(content, "Request body")
    result = await service.validate(
        ValidationRequest(
            resource_content=content,
            content_type=content_type,
            profile_url=profile_url,
            fhir_version_override=fhir_version,
        )
    )
    return result.to_dict()


@app.post("/api/validation/validate/json")
async def validate_json(
    request: Request,
    fhir_version: Optional[str] = Query(None, description="FHIR version override"),
    profile_url: Optional[str] = Query(None, description="Profile URL"),
    service: FhirValidationService = Depends(get_validation_service),
) -> Dict[str, Any]:
    """Validate a raw JSON request body."""
    return await _validate_raw(
        request, JSON_CONTENT_TYPE, fhir_version, profile_url, service
    )


@app.post("/api/validation/validate/xml")
async def validate_xml(
    request: Request,
    fhir_version: Optional[str] = Query(None, description="FHIR version override"),
    profile_url: Optional[str] = Query(None, description="Profile URL"),
    service: FhirValidationService = Depends(get_validation_service),
) -> Dict[str, Any]:
    """Validate a raw XML request body."""
    return await _validate_raw(
        request, XML_CONTENT_TYPE, fhir_version, profile_url, service
    )


@app.get("/api/validation/version")
def get_version(
    service: FhirValidationService = Depends(get_validation_service),
) -> Dict[str, Any]:
    """Get the FHIR version configured for the server."""
    return {
        "fhir_version": service.current_fhir_version,
        "supported_versions": [v.value for v in FhirVersion],
    }


@app.get("/metrics/performance")
def get_performance_metrics():
    """Get endpoint and service operation metrics."""
    return get_monitor().get_performance_summary()


@app.post("/metrics/reset")
def reset_metrics():
    """Reset all performance metrics (useful for testing)."""
    get_monitor().reset_metrics()
    return {
        "message": "All metrics have been reset",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


mount_mcp_server(app, path="/mcp", options=get_options())


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler with more helpful error messages."""
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "detail": (
                str(exc.detail)
                if hasattr(exc, "detail")
                else "The requested resource was not found"
            ),
            "path": str(request.url.path),
        },
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Custom 500 handler for internal errors."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": "An unexpected error occurred processing your request",
        },
    )
