"""
CLI interface tests for dep-plugins.
Tests the command-line interface and main entry points.
"""

import json
import logging
import os
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from dep_plugins.dependency import PackageRecord
from dep_plugins.error_handling import TreeProviderError, get_error_handler
from dep_plugins.main import cli

from conftest import real


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self):
        """Test CLI help message."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "dep-plugins" in result.output.lower()

    def test_cli_version(self):
        """Test CLI version display."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_info_command(self):
        """Test the info command."""
        runner = CliRunner()
        result = runner.invoke(cli, ["info"])

        assert result.exit_code == 0
        assert "dep-parser-" in result.output

    def test_log_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEP_PLUGINS_LOG_LEVEL", "DEBUG")

        runner = CliRunner()
        result = runner.invoke(cli, ["info"])

        assert result.exit_code == 0
        assert get_error_handler().logger.logger.isEnabledFor(logging.DEBUG)


class TestDiscoveryCommands:
    """Test store, entry and plugin commands."""

    def test_enumerate(self, flat_store):
        runner = CliRunner()
        result = runner.invoke(cli, ["enumerate", str(flat_store)])

        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert len(lines) == 4
        assert str(real(flat_store / "alpha")) in lines

    def test_enumerate_missing_store(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["enumerate", str(tmp_path / "nowhere")])

        assert result.exit_code == 0
        assert result.output.strip() == ""

    def test_entry(self, plugin_store):
        runner = CliRunner()
        result = runner.invoke(cli, ["entry", str(plugin_store / "dep-parser-yaml")])

        assert result.exit_code == 0
        assert result.output.strip().endswith(os.path.join("lib", "yaml_parser.py"))

    def test_entry_not_found(self, temp_dir):
        runner = CliRunner()
        result = runner.invoke(cli, ["entry", str(temp_dir)])

        assert result.exit_code == 1

    def test_load(self, plugin_store, project_dir):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["load", "dep-parser-alpha", "--project", str(project_dir)]
        )

        assert result.exit_code == 0
        assert "Loaded dep-parser-alpha" in result.output
        assert "AlphaParser" in result.output

    def test_load_failure(self, project_dir):
        runner = CliRunner()
        result = runner.invoke(cli, ["load", "nothing-here", "--project", str(project_dir)])

        assert result.exit_code == 1

    def test_parsers(self, plugin_store, project_dir):
        runner = CliRunner()
        result = runner.invoke(cli, ["parsers", str(project_dir)])

        assert result.exit_code == 0
        assert "1. AlphaParser" in result.output
        assert "3. YamlishParser" in result.output

    def test_parsers_builtin(self, project_dir):
        runner = CliRunner()
        result = runner.invoke(cli, ["parsers", str(project_dir), "--builtin"])

        assert result.exit_code == 0
        assert "JsonParser" in result.output


class TestParseCommand:
    """Test the parse command."""

    def test_parse_with_plugin(self, plugin_store, project_dir, temp_dir):
        data = temp_dir / "data.json"
        data.write_text('{"a": 1}')

        runner = CliRunner()
        result = runner.invoke(cli, ["parse", str(data), "--project", str(project_dir)])

        assert result.exit_code == 0
        assert json.loads(result.output) == {"a": 1}

    def test_parse_sync_with_type(self, plugin_store, project_dir, temp_dir):
        data = temp_dir / "data.txt"
        data.write_text("a: 1")

        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["parse", str(data), "--project", str(project_dir), "--type", "yaml", "--sync"],
        )

        assert result.exit_code == 0
        output = json.loads(result.output)
        assert output["parser"] == "YamlishParser"
        assert output["mode"] == "sync"

    def test_parse_builtin(self, project_dir, temp_dir):
        data = temp_dir / "data.yaml"
        data.write_text("items:\n  - one\n  - two\n")

        runner = CliRunner()
        result = runner.invoke(
            cli, ["parse", str(data), "--project", str(project_dir), "--builtin"]
        )

        assert result.exit_code == 0
        assert json.loads(result.output) == {"items": ["one", "two"]}

    def test_parse_no_matching_parser(self, project_dir, temp_dir):
        data = temp_dir / "data.csv"
        data.write_text("a,b")

        runner = CliRunner()
        result = runner.invoke(cli, ["parse", str(data), "--project", str(project_dir)])

        assert result.exit_code == 1


class TestExtractCommand:
    """Test the extract command with a mocked extractor."""

    def test_extract_json(self, project_dir):
        records = [PackageRecord("a", "1.10.0", project_dir / "node_modules" / "a")]

        with patch("dep_plugins.main.TreeExtractor") as mock_extractor:
            mock_extractor.return_value.extract = AsyncMock(return_value=records)

            runner = CliRunner()
            result = runner.invoke(
                cli, ["extract", str(project_dir), "--output-format", "json"]
            )

        assert result.exit_code == 0
        output = json.loads(result.output)
        assert output[0]["name"] == "a"
        assert output[0]["version"] == "1.10.0"

    def test_extract_console(self, project_dir):
        records = [PackageRecord("a", "1.10.0", project_dir / "node_modules" / "a")]

        with patch("dep_plugins.main.TreeExtractor") as mock_extractor:
            mock_extractor.return_value.extract = AsyncMock(return_value=records)

            runner = CliRunner()
            result = runner.invoke(cli, ["extract", str(project_dir)])

        assert result.exit_code == 0
        assert "1 packages" in result.output

    def test_extract_provider_failure(self, project_dir):
        with patch("dep_plugins.main.TreeExtractor") as mock_extractor:
            mock_extractor.return_value.extract = AsyncMock(
                side_effect=TreeProviderError("No dependency tree provider produced output")
            )

            runner = CliRunner()
            result = runner.invoke(cli, ["extract", str(project_dir)])

        assert result.exit_code == 1


class TestConfigCommands:
    """Test configuration management commands."""

    def test_config_init(self, tmp_path):
        runner = CliRunner()
        config_path = tmp_path / "generated.json"
        result = runner.invoke(cli, ["config", "init", "--path", str(config_path)])

        assert result.exit_code == 0
        data = json.loads(config_path.read_text())
        assert data["registry"]["plugin_prefix"] == "dep-parser-"

    def test_config_init_refuses_overwrite(self, tmp_path):
        config_path = tmp_path / "existing.json"
        config_path.write_text("{}")

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "init", "--path", str(config_path)])

        assert result.exit_code == 0
        assert config_path.read_text() == "{}"

    def test_config_show(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "node_modules" in result.output
        assert "dep-parser-" in result.output

    def test_config_validate(self, tmp_path):
        good = tmp_path / "good.json"
        good.write_text(json.dumps({"registry": {"plugin_prefix": "my-parser-"}}))
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"performance": {"max_cache_size": -1}}))

        runner = CliRunner()
        assert runner.invoke(cli, ["config", "validate", str(good)]).exit_code == 0
        assert runner.invoke(cli, ["config", "validate", str(bad)]).exit_code == 1
