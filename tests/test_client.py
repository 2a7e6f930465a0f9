"""Tests for mcp_bridge.client."""

import sys

import pytest

from mcp_bridge.client import ProviderClient, content_text
from mcp_bridge.errors import LaunchError, ProtocolError, StartupTimeoutError
from mcp_bridge.models import ProviderDescriptor

from conftest import echo_descriptor


@pytest.fixture
def echo_client():
    client = ProviderClient.spawn(echo_descriptor())
    yield client
    client.close()


class TestSpawn:
    """Tests for process launch and the liveness probe."""

    def test_spawn_and_handshake(self, echo_client):
        caps = echo_client.handshake()
        assert caps.server_name == "echo"
        assert caps.protocol_version
        assert echo_client.capabilities is caps

    def test_banner_is_tolerated(self):
        client = ProviderClient.spawn(echo_descriptor("echo", "--banner", "Starting echo provider..."))
        try:
            client.handshake()
            assert [t.name for t in client.list_tools()] == ["echo", "sleep"]
        finally:
            client.close()

    def test_silent_provider_times_out(self):
        with pytest.raises(StartupTimeoutError):
            ProviderClient.spawn(echo_descriptor("mute", "--silent"), probe_timeout=0.5)

    def test_missing_command(self):
        descriptor = ProviderDescriptor(name="ghost", command="/nonexistent/tool-provider")
        with pytest.raises(LaunchError):
            ProviderClient.spawn(descriptor)

    def test_environment_overrides_reach_the_process(self, tmp_path):
        script = tmp_path / "env_provider.py"
        script.write_text(
            "import os\n"
            "from mcp_bridge.server import StdioToolServer, ToolHandler\n"
            "class Env(ToolHandler):\n"
            "    name = 'env'\n"
            "    def handle(self, params):\n"
            "        return os.environ.get(params['key'], '')\n"
            "server = StdioToolServer('env')\n"
            "server.register(Env())\n"
            "server.run()\n"
        )
        descriptor = ProviderDescriptor(
            name="env",
            command=sys.executable,
            arguments=(str(script),),
            env={"BRIDGE_TEST_VALUE": "configured"},
        )
        client = ProviderClient.spawn(descriptor)
        try:
            result = client.call_tool("env", {"key": "BRIDGE_TEST_VALUE"})
            assert result.output == "configured"
        finally:
            client.close()


class TestOperations:
    """Tests for list_tools / call_tool over a live session."""

    def test_list_tools_decodes_schema(self, echo_client):
        tools = {t.name: t for t in echo_client.list_tools()}
        echo = tools["echo"]
        assert echo.description.startswith("Echoes")
        assert echo.required == ["text"]
        assert echo.parameters[0].name == "text"
        assert echo.parameters[0].type == "string"
        assert echo.input_schema["properties"]["text"]["type"] == "string"

    def test_call_tool(self, echo_client):
        result = echo_client.call_tool("echo", {"text": "  hi  "}, call_id="call_1")
        assert result.id == "call_1"
        assert result.output == "hi"
        assert result.ok

    def test_tool_reported_error(self, echo_client):
        result = echo_client.call_tool("echo", {"text": 42})
        assert not result.ok
        assert "text must be a string" in result.error

    def test_unknown_tool_is_protocol_error(self, echo_client):
        with pytest.raises(ProtocolError) as exc_info:
            echo_client.call_tool("does-not-exist", {})
        assert "Unknown tool" in str(exc_info.value)
        assert exc_info.value.error["code"] == -32602

    def test_close_is_idempotent(self):
        client = ProviderClient.spawn(echo_descriptor())
        client.close()
        client.close()
        assert not client.transport.is_alive()


class TestContentText:
    """Tests for content_text()."""

    def test_concatenates_trimmed_text_items(self):
        result = {"content": [{"type": "text", "text": " a \n"}, {"type": "text", "text": "b"}]}
        assert content_text(result) == "a\nb"

    def test_non_text_items_are_json(self):
        result = {"content": [{"type": "image", "data": "xx"}]}
        assert '"type": "image"' in content_text(result)

    def test_empty(self):
        assert content_text(None) == ""
        assert content_text({"content": []}) == ""

    def test_result_without_content(self):
        assert content_text({"price": 3}) == '{\n  "price": 3\n}'
