"""Tests for the CLI module."""

import json

import pytest
from unittest.mock import patch
from click.testing import CliRunner

from capdomain.cli import main


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def env(domains_dir, scratch_dir):
    """Environment pointing the CLI at temporary domains and scratch dirs."""
    return {
        "CAPDOMAIN_DOMAINS_PATH": str(domains_dir),
        "CAPDOMAIN_SCRATCH_DIR": str(scratch_dir),
        "CAPDOMAIN_SANDBOX": "false",
        "CAPDOMAIN_LOG_LEVEL": "WARNING",
    }


class TestCLI:
    """Test CLI commands."""

    def test_main_help(self, runner):
        """Main command shows help."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Capability Domain" in result.output

    def test_version(self, runner):
        """Version flag works."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_malformed_environment(self, runner):
        result = runner.invoke(main, ["list"], env={"CAPDOMAIN_CODE_TIMEOUT": "never"})

        assert result.exit_code == 1
        assert "CAPDOMAIN_CODE_TIMEOUT" in result.output


class TestListCommand:
    """Test list command."""

    def test_markdown(self, runner, env):
        result = runner.invoke(main, ["list"], env=env)

        assert result.exit_code == 0
        assert "- name: code-reviewer" in result.output
        assert "## Code Execution" in result.output

    def test_raw_json(self, runner, env):
        result = runner.invoke(main, ["list", "--raw"], env=env)

        assert result.exit_code == 0
        entries = json.loads(result.output)
        assert [e["name"] for e in entries] == ["code-reviewer", "execute-python", "execute-nodejs"]
        assert entries[0]["kind"] == "skill"

    def test_domains_option(self, runner, env, tmp_path):
        """--domains overrides the environment."""
        empty = tmp_path / "empty"
        empty.mkdir()

        result = runner.invoke(main, ["--domains", str(empty), "list", "--raw"], env=env)

        assert result.exit_code == 0
        assert [e["kind"] for e in json.loads(result.output)] == ["code", "code"]

    def test_domains_path_is_file(self, runner, env, tmp_path):
        """An unusable domains root is reported as an error."""
        bogus = tmp_path / "bogus"
        bogus.write_text("")
        env["CAPDOMAIN_DOMAINS_PATH"] = str(bogus)

        result = runner.invoke(main, ["list"], env=env)

        assert result.exit_code == 1
        assert "not a directory" in result.output


class TestDescribeCommand:
    """Test describe command."""

    def test_known_and_unknown(self, runner, env):
        result = runner.invoke(main, ["describe", "code-reviewer", "nope"], env=env)

        assert result.exit_code == 0
        assert '"implementation": "skill"' in result.output
        assert "Unknown capability: nope" in result.output

    def test_requires_names(self, runner, env):
        result = runner.invoke(main, ["describe"], env=env)

        assert result.exit_code == 2


class TestExecuteCommand:
    """Test execute command."""

    def test_single_capability(self, runner, env):
        result = runner.invoke(
            main,
            ["execute", "execute-python", "--input", json.dumps({"code": "print(5 * 5)"})],
            env=env,
        )

        assert result.exit_code == 0
        results = json.loads(result.output)
        assert results[0]["success"] is True
        assert results[0]["result"]["stdout"].strip() == "25"

    def test_failure_exits_nonzero(self, runner, env):
        result = runner.invoke(main, ["execute", "missing"], env=env)

        assert result.exit_code == 1
        assert json.loads(result.output)[0]["error_code"] == "NOT_FOUND"

    def test_batch_file(self, runner, env, tmp_path):
        batch = tmp_path / "batch.json"
        batch.write_text(json.dumps([{"name": "code-reviewer"}, {"name": "execute-python", "input": {"code": "print(1)"}}]))

        result = runner.invoke(main, ["execute", "--batch", str(batch)], env=env)

        assert result.exit_code == 0
        assert [r["name"] for r in json.loads(result.output)] == ["code-reviewer", "execute-python"]

    def test_name_or_batch_required(self, runner, env):
        result = runner.invoke(main, ["execute"], env=env)

        assert result.exit_code == 2
        assert "Provide either" in result.output

    def test_invalid_input_json(self, runner, env):
        result = runner.invoke(main, ["execute", "execute-python", "--input", "{nope"], env=env)

        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_input_must_be_object(self, runner, env):
        result = runner.invoke(main, ["execute", "execute-python", "--input", "[1, 2]"], env=env)

        assert result.exit_code == 2

    def test_batch_must_be_array(self, runner, env, tmp_path):
        batch = tmp_path / "batch.json"
        batch.write_text(json.dumps({"name": "code-reviewer"}))

        result = runner.invoke(main, ["execute", "--batch", str(batch)], env=env)

        assert result.exit_code == 2


class TestFilesCommand:
    """Test files command."""

    def test_no_files(self, runner, env):
        result = runner.invoke(main, ["files"], env=env)

        assert result.exit_code == 0
        assert "No generated files." in result.output

    def test_lists_files(self, runner, env, scratch_dir):
        scratch_dir.mkdir(parents=True)
        (scratch_dir / "plot.png").write_bytes(b"png")

        result = runner.invoke(main, ["files"], env=env)

        assert result.exit_code == 0
        assert "plot.png (3 bytes" in result.output
        assert "/download/plot.png" in result.output


class TestServeCommand:
    """Test serve and mcp commands."""

    @patch("uvicorn.run")
    def test_serve(self, mock_run, runner, env):
        result = runner.invoke(main, ["serve", "--port", "9000"], env=env)

        assert result.exit_code == 0
        mock_run.assert_called_once_with("capdomain.broker:app", host="127.0.0.1", port=9000, reload=False)

    @patch("mcp_capdomain.server.mcp.run")
    def test_mcp(self, mock_run, runner):
        result = runner.invoke(main, ["mcp"])

        assert result.exit_code == 0
        mock_run.assert_called_once()
