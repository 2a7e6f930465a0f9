"""Tests for mcp_bridge.config."""

import textwrap

import pytest

from mcp_bridge import config as config_module
from mcp_bridge.errors import ConfigurationError


class TestFromDict:
    """Tests for building configs from parsed YAML."""

    def test_defaults(self):
        cfg = config_module.from_dict({})
        assert cfg.llm.endpoint == "http://localhost:11434/api"
        assert cfg.database.path == "test.db"
        assert cfg.bridge.max_turns == 5
        assert cfg.bridge.message_timeout == 300.0
        assert cfg.bridge.string_enum_fields == ["limit", "interval"]
        assert cfg.providers == []

    def test_providers(self):
        cfg = config_module.from_dict({
            "mcp_servers": [
                {"name": "bybit", "command": "/bin/sh", "arguments": ["-c", "pnpm run serve"],
                 "env": {"BYBIT_USE_TESTNET": True, "EMPTY": None}},
            ],
        })
        [descriptor] = cfg.provider_descriptors()
        assert descriptor.name == "bybit"
        assert descriptor.argv == ["/bin/sh", "-c", "pnpm run serve"]
        assert descriptor.env == {"BYBIT_USE_TESTNET": "True", "EMPTY": ""}

    @pytest.mark.parametrize("data, field", [
        ({"llm": {"model": ""}}, "llm.model"),
        ({"llm": {"endpoint": ""}}, "llm.endpoint"),
        ({"mcp_servers": [{"command": "x"}]}, "mcp_servers[0].name"),
        ({"mcp_servers": [{"name": "x"}]}, "mcp_servers[0].command"),
        ({"mcp_servers": [{"name": "a", "command": "x"}, {"name": "a", "command": "y"}]}, "mcp_servers[1].name"),
        ({"mcp_servers": [{"name": "a", "command": "x", "arguments": "-v"}]}, "mcp_servers[0].arguments"),
        ({"mcp_servers": {"name": "a"}}, "mcp_servers"),
        ({"database": {"path": ""}}, "database.path"),
        ({"logging": {"level": "loud"}}, "logging.level"),
        ({"bridge": {"max_turns": 0}}, "bridge.max_turns"),
        ({"bridge": {"max_turns": "many"}}, "bridge.max_turns"),
        ({"bridge": {"retries": 3}}, "bridge.retries"),
        ({"llm": "ollama"}, "llm"),
    ])
    def test_validation(self, data, field):
        with pytest.raises(ConfigurationError) as exc_info:
            config_module.from_dict(data)
        assert exc_info.value.field == field

    def test_numeric_strings_are_coerced(self):
        cfg = config_module.from_dict({"bridge": {"max_turns": "3", "message_timeout": 60}})
        assert cfg.bridge.max_turns == 3
        assert cfg.bridge.message_timeout == 60.0


class TestFiles:
    """Tests for loading and creating config files."""

    def test_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent("""
            llm:
              model: "llama3"
            mcp_servers:
              - name: "echo"
                command: "python"
                arguments: ["-m", "mcp_bridge.servers.echo"]
            logging:
              level: "debug"
        """))
        cfg = config_module.load(path)
        assert cfg.llm.model == "llama3"
        assert cfg.providers[0].arguments == ["-m", "mcp_bridge.servers.echo"]
        assert cfg.logging.level == "debug"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("llm: [unclosed")
        with pytest.raises(ConfigurationError):
            config_module.load(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            config_module.load(tmp_path / "nope.yaml")

    def test_load_or_create(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        cfg, created = config_module.load_or_create(path)
        assert created
        assert path.exists()

        again, created = config_module.load_or_create(path)
        assert not created
        assert again.llm.model == cfg.llm.model
        assert again.llm.system_prompt == cfg.llm.system_prompt

    def test_example_config_loads(self):
        from pathlib import Path
        example = Path(__file__).resolve().parent.parent / "example" / "config.yaml"
        cfg = config_module.load(example)
        assert [p.name for p in cfg.providers] == ["echo", "sqlite"]
