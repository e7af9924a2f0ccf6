"""
Tests for the MCP server: configuration, message dispatch and tool calls.
"""

import json
import os
from unittest.mock import patch

import pytest

from fhir_record_api.config import FhirOptions
from fhir_record_api.mcp_server import (
    TOOLS,
    MCPConfig,
    MCPServer,
    build_resource_summary,
)
from fhir_record_api.models import ParseResult


@pytest.fixture
def server():
    return MCPServer(MCPConfig(transport="http"), FhirOptions())


def _call(name, **arguments):
    return json.dumps(
        {"id": 7, "method": "call_tool", "params": {"name": name, "arguments": arguments}}
    )


def _payload(response):
    """Decode the JSON text content of a ``call_tool`` response."""
    content = response["result"][0]
    assert content["type"] == "text"
    try:
        return json.loads(content["text"])
    except json.JSONDecodeError:
        return content["text"]


class TestMCPConfig:
    """Configuration loading."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = MCPConfig.from_env()

        assert config.transport == "stdio"
        assert config.port is None
        assert config.auth_token is None
        assert config.require_auth is False

    def test_from_environment(self):
        env = {
            "MCP_TRANSPORT": "http",
            "MCP_PORT": "9100",
            "MCP_HOST": "0.0.0.0",
            "MCP_AUTH_TOKEN": "secret",
            "MCP_REQUIRE_AUTH": "true",
            "MCP_LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env):
            config = MCPConfig.from_env()

        assert config.transport == "http"
        assert config.port == 9100
        assert config.host == "0.0.0.0"
        assert config.auth_token == "secret"
        assert config.require_auth is True
        assert config.log_level == "DEBUG"

    def test_invalid_transport(self):
        with pytest.raises(ValueError, match="Unsupported transport"):
            MCPServer(MCPConfig(transport="carrier-pigeon"), FhirOptions())


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, server):
        assert server.running is False
        await server.start()
        assert server.running is True
        assert server.server is not None

        await server.start()
        assert server.running is True

        await server.stop()
        assert server.running is False
        assert server.server is None


class TestMessageHandling:
    """Envelope decoding, authentication and method dispatch."""

    @pytest.mark.asyncio
    async def test_ping(self, server):
        assert await server.handle_message('{"method": "ping"}') == {"result": "pong"}

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, server):
        response = await server.handle_message('{"id": "abc", "method": "ping"}')
        assert response == {"result": "pong", "id": "abc"}

    @pytest.mark.asyncio
    async def test_list_tools(self, server):
        response = await server.handle_message('{"method": "list_tools"}')
        names = [tool["name"] for tool in response["result"]]
        assert names == [tool.name for tool in TOOLS]
        assert len(names) == 7
        assert "inputSchema" in response["result"][0]

    @pytest.mark.asyncio
    async def test_parse_error(self, server):
        response = await server.handle_message("{not json")
        assert response["error"]["code"] == -32700

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ['["ping"]', '{"params": {}}', '{"method": 3}'])
    async def test_invalid_request(self, server, message):
        response = await server.handle_message(message)
        assert response["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_unknown_method(self, server):
        response = await server.handle_message('{"method": "teleport"}')
        assert response["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server):
        response = await server.handle_message(_call("delete_everything"))
        assert response["error"]["code"] == -32601
        assert response["id"] == 7

    @pytest.mark.asyncio
    async def test_missing_tool_argument(self, server):
        response = await server.handle_message(_call("parse_fhir_resource"))
        assert response["error"]["code"] == -32602
        assert "resource_json" in response["error"]["message"]

    @pytest.mark.asyncio
    async def test_authentication_required(self):
        config = MCPConfig(transport="http", auth_token="secret", require_auth=True)
        server = MCPServer(config, FhirOptions())

        denied = await server.handle_message('{"method": "ping"}')
        assert denied["error"]["code"] == -32600
        assert denied["error"]["message"] == "Authentication required"

        wrong = await server.handle_message('{"method": "ping"}', auth_token="guess")
        assert wrong["error"]["code"] == -32600

        allowed = await server.handle_message('{"method": "ping"}', auth_token="secret")
        assert allowed == {"result": "pong"}


class TestTools:
    """Each tool through the ``call_tool`` method."""

    @pytest.mark.asyncio
    async def test_parse_fhir_resource(self, server, load_fixture):
        response = await server.handle_message(
            _call("parse_fhir_resource", resource_json=load_fixture("r4/patient.json"))
        )
        payload = _payload(response)

        assert payload["success"] is True
        assert payload["resource_type"] == "Patient"
        assert payload["metadata"]["name"] == "John William Smith"
        assert "serialized_resource" not in payload

    @pytest.mark.asyncio
    async def test_parse_fhir_resource_failure(self, server, load_fixture):
        response = await server.handle_message(
            _call("parse_fhir_resource", resource_json=load_fixture("r4/malformed.json"))
        )
        payload = _payload(response)
        assert payload["success"] is False
        assert payload["error_message"]

    @pytest.mark.asyncio
    async def test_parse_with_version_override(self, server, load_fixture):
        response = await server.handle_message(
            _call(
                "parse_fhir_resource",
                resource_json=load_fixture("r5/transport.json"),
                fhir_version="R5",
            )
        )
        assert _payload(response)["fhir_version"] == "R5"

    @pytest.mark.asyncio
    async def test_convert_fhir_format(self, server, load_fixture):
        response = await server.handle_message(
            _call(
                "convert_fhir_format",
                resource_content=load_fixture("r4/patient.json"),
                from_format="json",
                to_format="xml",
            )
        )
        payload = _payload(response)

        assert payload["success"] is True
        assert payload["converted_content"].startswith("<Patient")
        assert payload["error_message"] is None

    @pytest.mark.asyncio
    async def test_convert_fhir_format_failure(self, server, load_fixture):
        response = await server.handle_message(
            _call(
                "convert_fhir_format",
                resource_content=load_fixture("r4/malformed.json"),
                from_format="json",
                to_format="xml",
            )
        )
        payload = _payload(response)

        assert payload["success"] is False
        assert payload["converted_content"] is None
        assert "Invalid JSON" in payload["error_message"]

    @pytest.mark.asyncio
    async def test_convert_unknown_format_is_reported(self, server, load_fixture):
        response = await server.handle_message(
            _call(
                "convert_fhir_format",
                resource_content=load_fixture("r4/patient.json"),
                from_format="json",
                to_format="yaml",
            )
        )
        payload = _payload(response)

        assert payload["success"] is False
        assert "Unsupported format" in payload["error_message"]

    @pytest.mark.asyncio
    async def test_convert_internal_failure_is_internal_error(
        self, server, load_fixture, monkeypatch
    ):
        async def broken_convert(content, from_format, to_format):
            raise RuntimeError("writer exploded")

        monkeypatch.setattr(server.tools.parser_service, "convert_format", broken_convert)
        response = await server.handle_message(
            _call(
                "convert_fhir_format",
                resource_content=load_fixture("r4/patient.json"),
                from_format="json",
                to_format="xml",
            )
        )

        assert response["error"]["code"] == -32603
        assert response["id"] == 7

    @pytest.mark.asyncio
    async def test_get_fhir_resource_info(self, server, load_fixture):
        response = await server.handle_message(
            _call("get_fhir_resource_info", resource_json=load_fixture("r4/observation.json"))
        )
        payload = _payload(response)

        assert payload["success"] is True
        assert payload["summary"] == "Type: Observation | ID: blood-pressure-1 | Status: final"

    @pytest.mark.asyncio
    async def test_validate_fhir_resource(self, server, load_fixture):
        response = await server.handle_message(
            _call(
                "validate_fhir_resource",
                resource_json=load_fixture("r4/patient_bad_date.json"),
            )
        )
        payload = _payload(response)

        assert payload["is_valid"] is False
        assert payload["error_count"] == 1
        assert payload["errors"][0]["location"] == "Patient.birthDate"

    @pytest.mark.asyncio
    async def test_validate_with_profile_warns(self, server, load_fixture):
        response = await server.handle_message(
            _call(
                "validate_fhir_resource",
                resource_json=load_fixture("r4/patient.json"),
                profile_url="http://example.org/StructureDefinition/p",
            )
        )
        payload = _payload(response)

        assert payload["is_valid"] is True
        assert payload["warning_count"] == 1

    @pytest.mark.asyncio
    async def test_quick_validate(self, server, load_fixture):
        valid = _payload(
            await server.handle_message(
                _call("quick_validate_fhir", resource_json=load_fixture("r4/patient.json"))
            )
        )
        invalid = _payload(
            await server.handle_message(
                _call("quick_validate_fhir", resource_json=load_fixture("r4/malformed.json"))
            )
        )

        assert valid["summary"] == "✓ Valid Patient resource"
        assert invalid["summary"] == "✗ Invalid: 1 error(s), 0 warning(s)"
        assert invalid["resource_type"] == "Unknown"

    @pytest.mark.asyncio
    async def test_current_version_and_config(self, server):
        version = _payload(await server.handle_message(_call("get_current_fhir_version")))
        config = _payload(await server.handle_message(_call("get_fhir_config")))

        assert version == "R4"
        assert config["fhir_version"] == "R4"
        assert config["supported_versions"] == ["R4", "R5"]

    @pytest.mark.asyncio
    async def test_unknown_arguments_are_ignored(self, server):
        response = await server.handle_message(
            _call("get_current_fhir_version", verbose=True)
        )
        assert _payload(response) == "R4"


def test_resource_summary_for_patient():
    result = ParseResult(
        success=True,
        fhir_version="R4",
        resource_type="Patient",
        resource_id="p1",
        metadata={"name": "Ada Lovelace"},
    )
    assert build_resource_summary(result) == "Type: Patient | ID: p1 | Name: Ada Lovelace"


def test_resource_summary_without_id():
    result = ParseResult(success=True, fhir_version="R4", resource_type="Condition")
    assert build_resource_summary(result) == "Type: Condition"
