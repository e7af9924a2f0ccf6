"""Model Context Protocol (MCP) server implementation.

Exposes the parsing and validation services as MCP tools. Two transports are
supported: ``stdio`` (served through the ``mcp`` SDK) and ``http`` (a FastAPI
app, see :mod:`fhir_record_api.mcp_fastapi_integration`).

Tools:
    parse_fhir_resource       Parse JSON and extract metadata.
    convert_fhir_format       Convert between JSON and XML.
    get_fhir_resource_info    One-line summary of a resource.
    validate_fhir_resource    Full validation result with issues.
    quick_validate_fhir       Pass/fail summary.
    get_current_fhir_version  Default FHIR version of the server.
    get_fhir_config           Effective process configuration.

Messages handled by :meth:`MCPServer.handle_message` are JSON-RPC style
objects with a ``method`` of ``ping``, ``list_tools`` or ``call_tool``. Errors
use the JSON-RPC codes -32700 (parse error), -32600 (invalid request or
authentication), -32601 (unknown method or tool), -32602 (missing tool
arguments) and -32603 (internal error).

Example:
        import asyncio
        from fhir_record_api.mcp_server import MCPConfig, MCPServer

        server = MCPServer(MCPConfig())
        reply = asyncio.run(server.handle_message('{"method": "ping"}'))
        print(reply)  # {'result': 'pong'}
"""

import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import FhirOptions
from .dispatcher import verify_bindings
from .exceptions import FhirRecordError
from .models import JSON_CONTENT_TYPE, ParseRequest, ParseResult, ValidationRequest
from .parser_service import FhirParserService
from .validation_service import FhirValidationService

logger = logging.getLogger(__name__)

SERVER_NAME = "fhir-record-api"

_VERSION_PROPERTY = {
    "type": "string",
    "description": "FHIR version override: 'R4' or 'R5' (server default if omitted)",
}

TOOLS: List[Tool] = [
    Tool(
        name="parse_fhir_resource",
        description=(
            "Parses a FHIR resource and extracts metadata including resource "
            "type, ID, and key properties. Supports FHIR R4 and R5."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "resource_json": {
                    "type": "string",
                    "description": "The FHIR resource content as a JSON string",
                },
                "fhir_version": _VERSION_PROPERTY,
            },
            "required": ["resource_json"],
        },
    ),
    Tool(
        name="convert_fhir_format",
        description="Converts a FHIR resource between JSON and XML formats.",
        inputSchema={
            "type": "object",
            "properties": {
                "resource_content": {
                    "type": "string",
                    "description": "The FHIR resource content",
                },
                "from_format": {"type": "string", "description": "'json' or 'xml'"},
                "to_format": {"type": "string", "description": "'json' or 'xml'"},
            },
            "required": ["resource_content", "from_format", "to_format"],
        },
    ),
    Tool(
        name="get_fhir_resource_info",
        description=(
            "Summarizes a FHIR resource: type, ID and key properties such as "
            "name or status."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "resource_json": {
                    "type": "string",
                    "description": "The FHIR resource content as a JSON string",
                },
            },
            "required": ["resource_json"],
        },
    ),
    Tool(
        name="validate_fhir_resource",
        description=(
            "Validates a FHIR resource and returns any errors, warnings, or "
            "informational messages. Supports FHIR R4 and R5."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "resource_json": {
                    "type": "string",
                    "description": "The FHIR resource content as a JSON string",
                },
                "profile_url": {
                    "type": "string",
                    "description": "Optional profile URL to validate against",
                },
                "fhir_version": _VERSION_PROPERTY,
            },
            "required": ["resource_json"],
        },
    ),
    Tool(
        name="quick_validate_fhir",
        description="Quick pass/fail validation of a FHIR resource with a summary.",
        inputSchema={
            "type": "object",
            "properties": {
                "resource_json": {
                    "type": "string",
                    "description": "The FHIR resource content as a JSON string",
                },
            },
            "required": ["resource_json"],
        },
    ),
    Tool(
        name="get_current_fhir_version",
        description="Gets the FHIR version configured for the server.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_fhir_config",
        description="Gets the FHIR processing configuration of the server.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


class ToolError(Exception):
    """Raised for tool calls that cannot be dispatched."""

    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(message)


class FhirTools:
    """Implementations of the MCP tools on top of the core services."""

    def __init__(
        self,
        parser_service: FhirParserService,
        validation_service: FhirValidationService,
    ):
        self.parser_service = parser_service
        self.validation_service = validation_service
        self._handlers: Dict[str, Callable[..., Awaitable[Any]]] = {
            "parse_fhir_resource": self.parse_fhir_resource,
            "convert_fhir_format": self.convert_fhir_format,
            "get_fhir_resource_info": self.get_fhir_resource_info,
            "validate_fhir_resource": self.validate_fhir_resource,
            "quick_validate_fhir": self.quick_validate_fhir,
            "get_current_fhir_version": self.get_current_fhir_version,
            "get_fhir_config": self.get_fhir_config,
        }
        self._tools = {tool.name: tool for tool in TOOLS}

    def list_tools(self) -> List[Tool]:
        return list(TOOLS)

    async def call(self, name: str, arguments: Optional[Dict[str, Any]]) -> Any:
        """Invoke a tool by name.

        Raises:
            ToolError: For unknown tools (-32601) or missing required
                arguments (-32602).
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolError(-32601, f"Tool not found: {name}")
        arguments = dict(arguments or {})
        required = self._tools[name].inputSchema.get("required", [])
        missing = [arg for arg in required if arguments.get(arg) is None]
        if missing:
            raise ToolError(-32602, f"Missing required argument(s): {', '.join(missing)}")
        allowed = self._tools[name].inputSchema.get("properties", {})
        return await handler(**{k: v for k, v in arguments.items() if k in allowed})

    async def parse_fhir_resource(
        self, resource_json: str, fhir_version: Optional[str] = None
    ) -> Dict[str, Any]:
        result = await self.parser_service.parse(
            ParseRequest(
                resource_content=resource_json,
                content_type=JSON_CONTENT_TYPE,
                fhir_version_override=fhir_version,
            )
        )
        return {
            "success": result.success,
            "resource_type": result.resource_type,
            "resource_id": result.resource_id,
            "fhir_version": result.fhir_version,
            "error_message": result.error_message,
            "metadata": result.metadata,
        }

    async def convert_fhir_format(
        self, resource_content: str, from_format: str, to_format: str
    ) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "success": True,
            "converted_content": None,
            "from_format": from_format,
            "to_format": to_format,
            "error_message": None,
        }
        try:
            response["converted_content"] = await self.parser_service.convert_format(
                resource_content, from_format, to_format
            )
        except FhirRecordError as e:
            logger.warning(f"Format conversion failed: {e}")
            response["success"] = False
            response["error_message"] = str(e)
        return response

    async def get_fhir_resource_info(self, resource_json: str) -> Dict[str, Any]:
        result = await self.parser_service.parse_json(resource_json)
        if not result.success:
            return {"success": False, "error_message": result.error_message}
        return {
            "success": True,
            "resource_type": result.resource_type or "Unknown",
            "resource_id": result.resource_id,
            "fhir_version": result.fhir_version
            or self.parser_service.current_fhir_version,
            "summary": build_resource_summary(result),
        }

    async def validate_fhir_resource(
        self,
        resource_json: str,
        profile_url: Optional[str] = None,
        fhir_version: Optional[str] = None,
    ) -> Dict[str, Any]:
        result = await self.validation_service.validate(
            ValidationRequest(
                resource_content=resource_json,
                content_type=JSON_CONTENT_TYPE,
                profile_url=profile_url,
                fhir_version_override=fhir_version,
            )
        )
        return {
            "is_valid": result.is_valid,
            "resource_type": result.resource_type,
            "fhir_version": result.fhir_version,
            "error_count": len(result.errors),
            "warning_count": len(result.warnings),
            "errors": [_issue_info(issue) for issue in result.errors],
            "warnings": [_issue_info(issue) for issue in result.warnings],
            "duration_ms": result.duration_ms,
        }

    async def quick_validate_fhir(self, resource_json: str) -> Dict[str, Any]:
        result = await self.validation_service.validate_json(resource_json)
        if result.is_valid:
            summary = f"✓ Valid {result.resource_type} resource"
        else:
            summary = (
                f"✗ Invalid: {len(result.errors)} error(s), "
                f"{len(result.warnings)} warning(s)"
            )
        return {
            "is_valid": result.is_valid,
            "resource_type": result.resource_type or "Unknown",
            "summary": summary,
            "fhir_version": result.fhir_version
            or self.validation_service.current_fhir_version,
        }

    async def get_current_fhir_version(self) -> str:
        return self.validation_service.current_fhir_version

    async def get_fhir_config(self) -> Dict[str, Any]:
        return self.validation_service.options.to_dict()


def build_resource_summary(result: ParseResult) -> str:
    """Build ``Type: X | ID: y | Name: n | Status: s`` from a parse result.

    Parts after the type are included only when present.
    """
    parts = [f"Type: {result.resource_type}"]
    if result.resource_id:
        parts.append(f"ID: {result.resource_id}")
    name = result.metadata.get("name")
    if name is not None:
        parts.append(f"Name: {name}")
    status = result.metadata.get("status")
    if status is not None:
        parts.append(f"Status: {status}")
    return " | ".join(parts)


def _issue_info(issue) -> Dict[str, Any]:
    return {"message": issue.message, "location": issue.location, "code": issue.code}


def _to_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2, ensure_ascii=False, default=str)


@dataclass
class MCPConfig:
    """Configuration container for :class:`MCPServer`.

    Attributes:
        transport: Transport backend ("stdio" or "http").
        port: TCP port for HTTP transport (ignored for stdio).
        host: Bind host for HTTP transport.
        auth_token: Optional bearer token for simple auth.
        require_auth: If True, reject unauthenticated requests.
        log_level: Python logging level name.
    """

    transport: str = "stdio"
    port: Optional[int] = None
    host: str = "localhost"
    auth_token: Optional[str] = None
    require_auth: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "MCPConfig":
        """Create configuration from environment variables."""
        return cls(
            transport=os.getenv("MCP_TRANSPORT", "stdio"),
            port=int(os.getenv("MCP_PORT", "8001")) if os.getenv("MCP_PORT") else None,
            host=os.getenv("MCP_HOST", "localhost"),
            auth_token=os.getenv("MCP_AUTH_TOKEN"),
            require_auth=os.getenv("MCP_REQUIRE_AUTH", "false").lower() == "true",
            log_level=os.getenv("MCP_LOG_LEVEL", "INFO"),
        )


class MCPServer:
    """Runtime façade owning the tool set and the transport lifecycle.

    The tool handlers are available as soon as the instance exists, so the
    HTTP integration can dispatch messages without calling :meth:`start`.
    """

    def __init__(self, config: MCPConfig, options: Optional[FhirOptions] = None):
        """Instantiate server (no I/O side-effects yet).

        Raises:
            ValueError: For unsupported transport values.
            UnsupportedCombinationError: If a format binding is missing.
        """
        if config.transport not in ["stdio", "http"]:
            raise ValueError(f"Unsupported transport: {config.transport}")

        self.config = config
        self.options = options or FhirOptions.from_env()
        self.running = False
        self.server: Optional[Server] = None

        self._setup_logging()
        verify_bindings()
        self.tools = FhirTools(
            FhirParserService(self.options), FhirValidationService(self.options)
        )

    def _setup_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.config.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    def authenticate(self, auth_token: Optional[str]) -> bool:
        if not self.config.require_auth:
            return True
        return auth_token is not None and auth_token == self.config.auth_token

    async def start(self) -> None:
        """Create the SDK server and register its handlers.

        Safe to call multiple times; later calls log a warning and return.
        """
        if self.running:
            logger.warning("Server is already running")
            return

        logger.info(f"Starting MCP server with {self.config.transport} transport")
        self.server = Server(SERVER_NAME)
        self._register_handlers(self.server)
        self.running = True
        logger.info(
            f"MCP server started (FHIR {self.options.version.value}, "
            f"{len(TOOLS)} tools)"
        )

    async def stop(self) -> None:
        if not self.running:
            return
        logger.info("Stopping MCP server")
        self.server = None
        self.running = False
        logger.info("MCP server stopped")

    def _register_handlers(self, server: Server) -> None:
        @server.list_tools()
        async def list_tools() -> List[Tool]:
            return self.tools.list_tools()

        @server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            result = await self.tools.call(name, arguments)
            return [TextContent(type="text", text=_to_text(result))]

    async def serve_stdio(self) -> None:
        """Serve MCP over stdin/stdout until the client disconnects."""
        await self.start()
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream, write_stream, self.server.create_initialization_options()
            )

    async def handle_message(
        self, message: str, auth_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Decode, authenticate (optional), and dispatch a single MCP message.

        Args:
            message: Raw JSON string representing an MCP request.
            auth_token: Bearer token when auth is enforced.

        Returns:
            Dict[str, Any]: JSON-serializable response envelope.
        """
        if not self.authenticate(auth_token):
            return {"error": {"code": -32600, "message": "Authentication required"}}

        try:
            msg = json.loads(message)
        except json.JSONDecodeError:
            return {"error": {"code": -32700, "message": "Parse error"}}
        return await self.dispatch(msg)

    async def dispatch(self, msg: Any) -> Dict[str, Any]:
        """Dispatch an already decoded message."""
        if not isinstance(msg, dict) or not isinstance(msg.get("method"), str):
            return {"error": {"code": -32600, "message": "Invalid request"}}

        method = msg["method"]
        response: Dict[str, Any]
        try:
            if method == "ping":
                response = {"result": "pong"}
            elif method == "list_tools":
                response = {"result": [t.model_dump() for t in self.tools.list_tools()]}
            elif method == "call_tool":
                params = msg.get("params") or {}
                result = await self.tools.call(params.get("name"), params.get("arguments"))
                content = TextContent(type="text", text=_to_text(result))
                response = {"result": [content.model_dump()]}
            else:
                response = {
                    "error": {"code": -32601, "message": f"Method not found: {method}"}
                }
        except ToolError as e:
            response = {"error": {"code": e.code, "message": str(e)}}
        except Exception as e:
            logger.error(f"Error handling message: {e}")
            response = {"error": {"code": -32603, "message": f"Internal error: {str(e)}"}}

        if "id" in msg:
            response["id"] = msg["id"]
        return response


async def run_server(config: Optional[MCPConfig] = None) -> None:
    """Run the MCP server on the configured transport until stopped."""
    if config is None:
        config = MCPConfig.from_env()

    if config.transport == "http":
        from .mcp_fastapi_integration import run_mcp_fastapi_server

        await run_mcp_fastapi_server(
            config, host=config.host, port=config.port or 8001
        )
        return

    server = MCPServer(config)
    try:
        logger.info("MCP server running on stdio...")
        await server.serve_stdio()
    finally:
        await server.stop()


def main() -> None:
    """Console entry point (``fhir-record-mcp``)."""
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("Server shutdown complete")
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
