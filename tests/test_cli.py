from __future__ import annotations

import json

import httpx
import pytest
from typer.testing import CliRunner

from conftest import FakeGenerator
from release_notes import cli
from release_notes.commits import CommitFetcher
from release_notes.errors import ModelUnavailable
from release_notes.models import GenerationOptions
from release_notes.pipeline import ReleaseNotesPipeline
from release_notes.tracing import Tracer

runner = CliRunner()


def _respond(payload) -> httpx.Response:
    request = httpx.Request("GET", "https://api.github.com/repos/acme/widgets/commits")
    return httpx.Response(200, json=payload, request=request)


@pytest.fixture(autouse=True)
def repository_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITHUB_ACCESS_TOKEN", "ghp_test")
    monkeypatch.setenv("REPO_OWNER", "acme")
    monkeypatch.setenv("REPO_NAME", "widgets")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("PROMPT_SLUG", raising=False)


def _install_pipeline(monkeypatch: pytest.MonkeyPatch, payload, generator) -> dict[str, object]:
    captured: dict[str, object] = {}

    def fake_build_pipeline(settings, **kwargs):
        captured.update(kwargs)
        client = httpx.AsyncClient(
            base_url="https://api.github.com",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)),
        )
        return ReleaseNotesPipeline(
            fetcher=CommitFetcher(client, owner=settings.repo_owner, repo=settings.repo_name),
            generator=generator,
            tracer=Tracer(settings.project_name, kwargs["exporter"]),
            options=GenerationOptions(model="gemini-test"),
            owned_clients=[client],
        )

    monkeypatch.setattr(cli, "build_pipeline", fake_build_pipeline)
    return captured


def test_generate_given_streaming_model_when_invoked_then_notes_are_printed(monkeypatch, github_payload) -> None:
    # Given
    encoded = "- Añadido ✓".encode("utf-8")
    generator = FakeGenerator([encoded[:4], encoded[4:9], encoded[9:]])
    captured = _install_pipeline(monkeypatch, github_payload, generator)

    # When
    result = runner.invoke(cli.app, ["generate", "2024-01-01", "2024-01-07", "--seed", "3"])

    # Then
    assert result.exit_code == 0, result.output
    assert "- Añadido ✓" in result.output
    assert captured["seed"] == 3
    assert captured["local_only"] is False


def test_generate_given_trace_file_when_invoked_then_spans_are_written(monkeypatch, github_payload, tmp_path) -> None:
    # Given
    _install_pipeline(monkeypatch, github_payload, FakeGenerator([b"Hello", b" world"]))
    trace_file = tmp_path / "spans.jsonl"

    # When
    result = runner.invoke(cli.app, ["generate", "2024-01-01", "2024-01-07", "--trace-file", str(trace_file)])

    # Then
    assert result.exit_code == 0, result.output
    records = [json.loads(line) for line in trace_file.read_text(encoding="utf-8").splitlines()]
    root = next(record for record in records if record["name"] == "generate-release-notes")
    assert root["output"] == "Hello world"


def test_generate_given_model_failure_when_invoked_then_exit_code_is_one(monkeypatch, github_payload) -> None:
    # Given
    _install_pipeline(monkeypatch, github_payload, FakeGenerator(error=ModelUnavailable("model down")))

    # When
    result = runner.invoke(cli.app, ["generate", "2024-01-01", "2024-01-07"])

    # Then
    assert result.exit_code == 1
    assert "model down" in result.output


def test_generate_given_local_only_when_invoked_then_commit_summaries_are_printed(monkeypatch, github_payload) -> None:
    # Given
    async def _async_get(self, url, params=None):
        return _respond(github_payload)

    monkeypatch.setattr(httpx.AsyncClient, "get", _async_get)

    # When
    result = runner.invoke(cli.app, ["generate", "2024-01-01", "2024-01-07", "--local-only"])

    # Then
    assert result.exit_code == 0, result.output
    assert "- Bump version to 1.4.0" in result.output
    assert "- Fix crash when config is empty" in result.output


def test_generate_given_missing_repository_settings_when_invoked_then_usage_error_is_reported(monkeypatch) -> None:
    # Given
    monkeypatch.delenv("REPO_NAME")

    # When
    result = runner.invoke(cli.app, ["generate", "2024-01-01", "2024-01-07"])

    # Then
    assert result.exit_code == 2
    assert "REPO_NAME" in result.output


def test_prompt_given_commits_when_invoked_then_prompt_is_printed_without_model_call(monkeypatch, github_payload) -> None:
    # Given
    async def _async_get(self, url, params=None):
        return _respond(github_payload)

    monkeypatch.setattr(httpx.AsyncClient, "get", _async_get)

    # When
    result = runner.invoke(cli.app, ["prompt", "2024-01-01", "2024-01-07"])

    # Then
    assert result.exit_code == 0, result.output
    assert "## System" in result.output
    assert result.output.count("SHA: ") == 3


def test_doctor_given_partial_environment_when_invoked_then_diagnostics_are_printed() -> None:
    # Given
    # Repository variables come from the autouse fixture.

    # When
    result = runner.invoke(cli.app, ["doctor"])

    # Then
    assert result.exit_code == 0
    assert "GITHUB_ACCESS_TOKEN set: True" in result.output
    assert "Repository: acme/widgets" in result.output
    assert "GEMINI_API_KEY set: False" in result.output


def test_prompt_given_trace_file_when_invoked_then_fetch_span_is_ended_and_exported(
    monkeypatch,
    github_payload,
    tmp_path,
) -> None:
    # Given
    async def _async_get(self, url, params=None):
        return _respond(github_payload)

    monkeypatch.setattr(httpx.AsyncClient, "get", _async_get)
    trace_file = tmp_path / "traces" / "prompt.jsonl"

    # When
    result = runner.invoke(cli.app, ["prompt", "2024-01-01", "2024-01-07", "--trace-file", str(trace_file)])

    # Then
    assert result.exit_code == 0, result.output
    records = [json.loads(line) for line in trace_file.read_text(encoding="utf-8").splitlines()]
    assert [record["name"] for record in records] == ["get-commits"]
    assert len(records[0]["output"]) == 3
