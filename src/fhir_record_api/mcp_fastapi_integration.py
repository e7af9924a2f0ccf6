"""
FastAPI integration for the MCP server.

Mounts MCP endpoints on a FastAPI application so the same process can serve
the REST API and the MCP tool surface, or runs a standalone MCP HTTP app.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import FhirOptions
from .mcp_server import SERVER_NAME, MCPConfig, MCPServer

logger = logging.getLogger(__name__)


class MCPFastAPIIntegration:
    """Serve MCP JSON-RPC style messages over HTTP POST.

    Responsibilities:
        * Decode incoming message bodies (400 with -32700 when malformed).
        * Enforce the optional bearer token (401 with -32600).
        * Delegate dispatch to an :class:`MCPServer`.
    """

    def __init__(
        self,
        mcp_config: Optional[MCPConfig] = None,
        options: Optional[FhirOptions] = None,
    ):
        self.mcp_config = mcp_config or MCPConfig(transport="http")
        self.server = MCPServer(self.mcp_config, options)
        logger.info("MCP FastAPI integration initialized")

    async def handle_mcp_request(self, request: Request) -> JSONResponse:
        """Handle a single MCP HTTP POST request."""
        try:
            body = await request.body()
            if not body:
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": {
                            "code": -32700,
                            "message": "Parse error: Empty request body",
                        }
                    },
                )

            try:
                message = json.loads(body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": {"code": -32700, "message": f"Parse error: {str(e)}"}
                    },
                )

            auth_token = None
            auth_header = request.headers.get("Authorization")
            if auth_header and auth_header.startswith("Bearer "):
                auth_token = auth_header[7:]
            if not self.server.authenticate(auth_token):
                return JSONResponse(
                    status_code=401,
                    content={
                        "error": {"code": -32600, "message": "Authentication required"}
                    },
                )

            response = await self.server.dispatch(message)
            return JSONResponse(content=response)

        except Exception as e:
            logger.error(f"Error handling MCP request: {e}")
            return JSONResponse(
                status_code=500,
                content={
                    "error": {"code": -32603, "message": f"Internal error: {str(e)}"}
                },
            )


def mount_mcp_server(
    app: FastAPI,
    path: str = "/mcp",
    config: Optional[MCPConfig] = None,
    options: Optional[FhirOptions] = None,
) -> MCPFastAPIIntegration:
    """Mount MCP endpoints under a given path.

    Adds three endpoint groups:
        POST {path}[/]           -> MCP message handler
        GET  {path}/health       -> liveness probe
        GET  {path}/info         -> tool summary

    Args:
        app: FastAPI application instance.
        path: Base path for MCP endpoints (default "/mcp").
        config: Optional :class:`MCPConfig`.
        options: FHIR options shared with the REST services.

    Returns:
        The integration instance serving the mounted routes.
    """
    logger.info(f"Mounting MCP server at {path}")

    mcp_integration = MCPFastAPIIntegration(config, options)

    @app.post(path or "/")
    @app.post(f"{path}/", include_in_schema=False)
    async def mcp_endpoint(request: Request) -> JSONResponse:
        return await mcp_integration.handle_mcp_request(request)

    @app.get(f"{path}/health")
    async def mcp_health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": "mcp-server",
            "version": __version__,
            "transport": "http",
        }

    @app.get(f"{path}/info")
    async def mcp_info() -> Dict[str, Any]:
        """Summarize exported MCP tools for discovery."""
        tools = mcp_integration.server.tools.list_tools()
        return {
            "service": f"{SERVER_NAME}-mcp",
            "version": __version__,
            "protocol": "Model Context Protocol",
            "fhir_version": mcp_integration.server.options.version.value,
            "tools": [tool.name for tool in tools],
            "transport": "http",
        }

    logger.info(f"MCP server mounted successfully at {path}")
    return mcp_integration


def create_mcp_app(
    config: Optional[MCPConfig] = None, options: Optional[FhirOptions] = None
) -> FastAPI:
    """Create a self-contained MCP FastAPI app with routes at the root."""
    app = FastAPI(
        title="FHIR Record API - MCP Server",
        description="Model Context Protocol server for FHIR resource parsing and validation",
        version=__version__,
    )
    mount_mcp_server(app, path="", config=config, options=options)
    return app


async def run_mcp_fastapi_server(
    config: Optional[MCPConfig] = None, host: str = "0.0.0.0", port: int = 8001
) -> None:
    """Start an MCP FastAPI server with uvicorn programmatically."""
    import uvicorn

    app = create_mcp_app(config)

    logger.info(f"Starting MCP FastAPI server on {host}:{port}")

    uvicorn_config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(uvicorn_config)
    await server.serve()
