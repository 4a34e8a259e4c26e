"""
Tests for the CLI interface.
"""
import sqlite3
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from prompt_desk.cli.main import app, console, EXIT_CODE_OK, EXIT_CODE_FAIL, EXIT_CODE_USAGE
from prompt_desk.core.token_counter import TokenUsage
from prompt_desk.sdk.openai_client import (
    CompletionResult,
    CompletionStream,
    RateLimitedError,
    UnauthorizedError
)

runner = CliRunner()
API_ENV = {"OPENAI_API_KEY": "sk-test"}


@pytest.fixture(autouse=True)
def no_dotenv():
    """Keep a developer's .env file out of the tests."""
    with patch('prompt_desk.config.loader.load_dotenv'):
        yield


@pytest.fixture(autouse=True)
def wide_console():
    """Keep tables from wrapping cell text."""
    console.width = 200
    yield


@pytest.fixture
def config_path(tmp_path):
    """Write a config file pointing history at a temporary database."""
    path = tmp_path / "prompt-desk.yaml"
    path.write_text(yaml.dump({
        "provider": {"model": "gpt-4o-mini"},
        "history": {"db_path": str(tmp_path / "history.db"), "capacity": 5},
        "templates": {"summarize": "Summarize {TEXT} in {WORDS} words"}
    }), encoding="utf-8")
    return str(path)


@pytest.fixture
def mock_client():
    """Mock the provider client used by the CLI."""
    with patch('prompt_desk.cli.main.PromptClient') as mock_class:
        client = mock_class.return_value
        client.complete.return_value = CompletionResult(
            text="Answer: 42",
            model="gpt-4o-mini",
            usage=TokenUsage(input_tokens=10, output_tokens=4),
            request_id="chat_1"
        )
        yield client


def invoke(config_path, *args, env=API_ENV):
    return runner.invoke(app, ["--config", config_path, *args], env=env)


class TestRunCommand:
    """Test sending prompts."""

    def test_run_prints_response_and_usage(self, config_path, mock_client):
        result = invoke(config_path, "run", "Summarize {TEXT} in {WORDS} words",
                        "--var", "TEXT=hello world", "--var", "WORDS=3")

        assert result.exit_code == EXIT_CODE_OK
        assert "Answer: 42" in result.output
        assert "Tokens:" in result.output
        mock_client.complete.assert_called_once_with(
            "Summarize hello world in 3 words", "gpt-4o-mini", None
        )

    def test_run_records_history(self, config_path, mock_client):
        invoke(config_path, "run", "Hello")

        result = invoke(config_path, "history", "list")

        assert result.exit_code == EXIT_CODE_OK
        assert "Hello" in result.output

    def test_missing_api_key_fails(self, config_path, mock_client):
        result = invoke(config_path, "run", "Hello", env={"OPENAI_API_KEY": ""})

        assert result.exit_code == EXIT_CODE_FAIL
        assert "OPENAI_API_KEY" in result.output
        mock_client.complete.assert_not_called()

    def test_run_with_extraction(self, config_path, mock_client):
        result = invoke(config_path, "run", "Q", "--extract", "Answer: (.+)")

        assert result.exit_code == EXIT_CODE_OK
        assert "Extracted: 42" in result.output

    def test_run_with_failed_extraction(self, config_path, mock_client):
        result = invoke(config_path, "run", "Q", "--extract", "(unclosed")

        assert result.exit_code == EXIT_CODE_OK
        assert "Nothing extracted" in result.output

    def test_run_with_template(self, config_path, mock_client):
        result = invoke(config_path, "run", "--template", "summarize", "--var", "TEXT=it", "--var", "WORDS=2")

        assert result.exit_code == EXIT_CODE_OK
        assert mock_client.complete.call_args.args[0] == "Summarize it in 2 words"

    def test_unresolved_placeholders_warned(self, config_path, mock_client):
        result = invoke(config_path, "run", "--template", "summarize", "--var", "TEXT=it")

        assert result.exit_code == EXIT_CODE_OK
        assert "Unresolved placeholders" in result.output
        assert "WORDS" in result.output
        assert mock_client.complete.call_args.args[0] == "Summarize it in {WORDS} words"

    def test_unknown_template(self, config_path, mock_client):
        result = invoke(config_path, "run", "--template", "nope")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown template" in result.output

    def test_prompt_and_template_conflict(self, config_path, mock_client):
        result = invoke(config_path, "run", "Hi", "--template", "summarize")
        assert result.exit_code == EXIT_CODE_USAGE

    def test_no_prompt(self, config_path, mock_client):
        result = invoke(config_path, "run")
        assert result.exit_code == EXIT_CODE_USAGE

    def test_invalid_var(self, config_path, mock_client):
        result = invoke(config_path, "run", "Hi {A}", "--var", "A")

        assert result.exit_code == EXIT_CODE_USAGE
        assert "KEY=VALUE" in result.output

    def test_blank_prompt_ignored(self, config_path, mock_client):
        result = invoke(config_path, "run", "   ")

        assert result.exit_code == EXIT_CODE_OK
        assert "Nothing to send" in result.output
        mock_client.complete.assert_not_called()

    def test_unknown_model(self, config_path, mock_client):
        result = invoke(config_path, "run", "Hi", "--model", "gpt-unknown")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unsupported model" in result.output

    def test_rate_limited(self, config_path, mock_client):
        mock_client.complete.side_effect = RateLimitedError("429 Too Many Requests", 429)

        result = invoke(config_path, "run", "Hi")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Rate limit reached" in result.output

    def test_unauthorized(self, config_path, mock_client):
        mock_client.complete.side_effect = UnauthorizedError("401", 401)

        result = invoke(config_path, "run", "Hi")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "rejected the API key" in result.output

    def test_history_write_failure(self, config_path, mock_client):
        with patch('prompt_desk.storage.repository.SqliteKeyValueStore.set_item',
                   side_effect=sqlite3.OperationalError("disk full")):
            result = invoke(config_path, "run", "Hi")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Answer: 42" in result.output
        assert "could not be saved" in result.output

    def test_stream(self, config_path, mock_client):
        chunks = [
            SimpleNamespace(id="c1", model="gpt-4o-mini", usage=None,
                            choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])
            for text in ("Ans", "wer: ", "42")
        ]
        mock_client.stream.return_value = CompletionStream(chunks, "gpt-4o-mini")

        result = invoke(config_path, "run", "Q", "--stream")

        assert result.exit_code == EXIT_CODE_OK
        assert "Answer: 42" in result.output
        mock_client.complete.assert_not_called()


class TestOtherCommands:
    """Test the remaining commands."""

    def test_vars(self):
        result = runner.invoke(app, ["vars", "Summarize {TEXT} in {WORDS} words, {TEXT}"])

        assert result.exit_code == EXIT_CODE_OK
        assert result.output.split() == ["TEXT", "WORDS"]

    def test_vars_none(self):
        result = runner.invoke(app, ["vars", "plain"])
        assert "No placeholders" in result.output

    def test_init(self, config_path):
        result = invoke(config_path, "init")

        assert result.exit_code == EXIT_CODE_OK
        assert "Database initialized" in result.output

    def test_bad_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("unknown: 1\n", encoding="utf-8")

        result = runner.invoke(app, ["--config", str(path), "templates"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output

    def test_templates(self, config_path):
        result = invoke(config_path, "templates")

        assert result.exit_code == EXIT_CODE_OK
        assert "summarize" in result.output
        assert "TEXT, WORDS" in result.output

    def test_models(self, config_path):
        result = invoke(config_path, "models")

        assert result.exit_code == EXIT_CODE_OK
        assert "gpt-4o-mini (default)" in result.output

    def test_extract_from_text(self):
        result = runner.invoke(app, ["extract", "Answer: (.+)", "--text", "Answer: 42"])

        assert result.exit_code == EXIT_CODE_OK
        assert "Extracted: 42" in result.output

    def test_extract_path_mode(self):
        result = runner.invoke(app, ["extract", "a.b", "--mode", "path", "--text", '{"a": {"b": "deep"}}'])

        assert "Extracted: deep" in result.output

    def test_extract_from_latest_history(self, config_path, mock_client):
        invoke(config_path, "run", "Q")

        result = invoke(config_path, "extract", "answer: (\\d+)")

        assert "Extracted: 42" in result.output

    def test_extract_without_history(self, config_path):
        result = invoke(config_path, "extract", "x")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "No history yet" in result.output


class TestHistoryCommands:
    """Test history management."""

    def test_list_empty(self, config_path):
        result = invoke(config_path, "history", "list")

        assert result.exit_code == EXIT_CODE_OK
        assert "No history yet" in result.output

    def test_stats(self, config_path, mock_client):
        invoke(config_path, "run", "one")
        invoke(config_path, "run", "two")

        result = invoke(config_path, "history", "stats")

        assert result.exit_code == EXIT_CODE_OK
        assert "Requests: 2" in result.output
        assert "Input tokens: 20" in result.output
        assert "Output tokens: 8" in result.output
        assert "$" in result.output

    def test_capacity_from_config(self, config_path, mock_client):
        for i in range(7):
            invoke(config_path, "run", f"prompt {i}")

        result = invoke(config_path, "history", "stats")

        assert "Requests: 5" in result.output

    def test_show_and_rate(self, config_path, mock_client):
        from prompt_desk.config.loader import load_app_config
        from prompt_desk.cli.main import _open_history

        invoke(config_path, "run", "Rate me")
        record = _open_history(load_app_config(config_path)).records[0]

        rate = invoke(config_path, "history", "rate", record.id[:8], "--rating", "5", "--notes", "great")
        show = invoke(config_path, "history", "show", record.id)

        assert rate.exit_code == EXIT_CODE_OK
        assert show.exit_code == EXIT_CODE_OK
        assert "Rate me" in show.output
        assert "Answer: 42" in show.output
        assert "Rating: 5/5" in show.output
        assert "Notes: great" in show.output

    def test_rate_requires_something(self, config_path):
        result = invoke(config_path, "history", "rate", "abc")
        assert result.exit_code == EXIT_CODE_USAGE

    def test_rate_out_of_range(self, config_path, mock_client):
        result = invoke(config_path, "history", "rate", "abc", "--rating", "9")
        assert result.exit_code != EXIT_CODE_OK

    def test_show_unknown(self, config_path):
        result = invoke(config_path, "history", "show", "deadbeef")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "No history record" in result.output

    def test_clear(self, config_path, mock_client):
        invoke(config_path, "run", "Hello")

        result = invoke(config_path, "history", "clear", "--yes")
        listing = invoke(config_path, "history", "list")

        assert result.exit_code == EXIT_CODE_OK
        assert "History cleared" in result.output
        assert "No history yet" in listing.output

    def test_clear_aborted(self, config_path, mock_client):
        invoke(config_path, "run", "Hello")

        result = runner.invoke(app, ["--config", config_path, "history", "clear"], input="n\n")
        listing = invoke(config_path, "history", "list")

        assert result.exit_code != EXIT_CODE_OK
        assert "Hello" in listing.output
