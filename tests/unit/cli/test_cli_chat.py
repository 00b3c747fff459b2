"""Tests for localpilot init / ask / complete / inline."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from conftest import FakeLlama, FakeLoader
from localpilot.cli.main import app
from localpilot.service import InferenceService

runner = CliRunner()


@pytest.fixture
def llm() -> FakeLlama:
    return FakeLlama(reply="Use a deque.", completion=" 42;")


@pytest.fixture
def cli_env(config, llm, embedder, downloader, tmp_path):
    """Patch config loading and service construction for the chat commands."""

    def _build(cfg):
        return InferenceService(cfg, loader=FakeLoader(llm), embedder=embedder, downloader=downloader)

    with (
        patch("localpilot.cli.chat.load_settings", return_value=config),
        patch("localpilot.cli.chat.build_service", side_effect=_build),
        patch(
            "localpilot.cli.chat.ensure_global_config",
            return_value=tmp_path / "home" / "config.yaml",
        ),
    ):
        yield


def _source(tmp_path, text: str):
    path = tmp_path / "main.cpp"
    path.write_text(text, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


def test_init_reports_model_ready(cli_env, downloader) -> None:
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    assert "Model ready" in result.output
    assert len(downloader.urls) == 1


def test_init_failure_exits_1(config, embedder, downloader, tmp_path) -> None:
    def _build(cfg):
        return InferenceService(
            cfg, loader=FakeLoader(fail_times=1), embedder=embedder, downloader=downloader
        )

    with (
        patch("localpilot.cli.chat.load_settings", return_value=config),
        patch("localpilot.cli.chat.build_service", side_effect=_build),
        patch("localpilot.cli.chat.ensure_global_config", return_value=tmp_path / "c.yaml"),
    ):
        result = runner.invoke(app, ["init"])

    assert result.exit_code == 1
    assert "AI initialization failed" in result.output


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


def test_ask_prints_reply(cli_env, llm) -> None:
    result = runner.invoke(app, ["ask", "Which container gives O(1) pops at both ends?"])
    assert result.exit_code == 0, result.output
    assert "Use a deque." in result.output
    assert len(llm.chat_calls) == 1


def test_ask_model_error_is_printed_not_raised(cli_env, llm) -> None:
    llm.error = RuntimeError("kv cache full")
    result = runner.invoke(app, ["ask", "Which container gives O(1) pops at both ends?"])
    assert result.exit_code == 0
    assert "Error: kv cache full" in result.output


# ---------------------------------------------------------------------------
# complete
# ---------------------------------------------------------------------------


def test_complete_prints_completion(cli_env, llm, tmp_path) -> None:
    path = _source(tmp_path, "int x =<CURSOR>\n")
    result = runner.invoke(app, ["complete", str(path)])
    assert result.exit_code == 0, result.output
    assert "42;" in result.output
    assert len(llm.completion_calls) == 1


def test_complete_requires_cursor(cli_env, tmp_path) -> None:
    path = _source(tmp_path, "int x = 1;\n")
    result = runner.invoke(app, ["complete", str(path)])
    assert result.exit_code == 1
    assert "No <CURSOR> marker" in result.output


def test_complete_missing_file(cli_env, tmp_path) -> None:
    result = runner.invoke(app, ["complete", str(tmp_path / "nope.cpp")])
    assert result.exit_code == 1
    assert "Path not found" in result.output


# ---------------------------------------------------------------------------
# inline
# ---------------------------------------------------------------------------


def test_inline_prints_code_only(cli_env, llm, tmp_path) -> None:
    llm.reply = "Here is the code:\nint twice(int x) { return 2 * x; }"
    path = _source(tmp_path, "int main() {\n}\n")

    result = runner.invoke(app, ["inline", str(path), "double a number", "--line", "2"])

    assert result.exit_code == 0, result.output
    assert "int twice(int x) { return 2 * x; }" in result.output
    assert "Here is the code" not in result.output


def test_inline_error_exits_1(cli_env, llm, tmp_path) -> None:
    llm.error = RuntimeError("decode failed")
    path = _source(tmp_path, "int main() {}\n")

    result = runner.invoke(app, ["inline", str(path), "anything"])

    assert result.exit_code == 1
    assert "// Error generating code: decode failed" in result.output
