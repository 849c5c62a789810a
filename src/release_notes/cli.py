"""Typer-based CLI for generating release notes from a commit window."""

from __future__ import annotations

import asyncio
import codecs
import logging
from pathlib import Path

import typer

from release_notes.commits import CommitFetcher, build_github_client
from release_notes.config import Settings
from release_notes.errors import ReleaseNotesError
from release_notes.models import TimeWindow
from release_notes.pipeline import build_pipeline, generate_release_notes
from release_notes.prompting import StaticPromptSource
from release_notes.tracing import (
    InMemorySpanExporter,
    JsonlSpanExporter,
    LoggingSpanExporter,
    SpanExporter,
    Tracer,
)

app = typer.Typer(add_completion=False, help="release-notes: summarize a window of commits with a language model")


def _echo_step(step: int, total: int, message: str) -> None:
    """Print a normalized progress step line to stderr."""
    typer.echo(f"[{step}/{total}] {message}", err=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _fail(exc: Exception) -> typer.Exit:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


async def _stream_notes(
    settings: Settings,
    start_date: str,
    end_date: str,
    exporter: SpanExporter,
    local_only: bool,
    model_name: str | None,
    seed: int | None,
    max_pages: int | None,
) -> None:
    pipeline = build_pipeline(
        settings,
        exporter=exporter,
        local_only=local_only,
        model_name=model_name,
        seed=seed,
        max_pages=max_pages,
    )
    async with pipeline:
        stream = await generate_release_notes(pipeline, start_date, end_date)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        async for chunk in stream:
            typer.echo(decoder.decode(chunk), nl=False)
        tail = decoder.decode(b"", final=True)
        typer.echo(tail)


async def _build_prompt_text(
    settings: Settings,
    start_date: str,
    end_date: str,
    max_pages: int | None,
    exporter: SpanExporter,
) -> str:
    token, owner, repo = settings.require_repository()
    async with build_github_client(token) as github:
        fetcher = CommitFetcher(
            github,
            owner=owner,
            repo=repo,
            per_page=settings.per_page,
            max_pages=max_pages or settings.max_pages,
        )
        with Tracer(settings.project_name, exporter).start_span("get-commits") as span:
            commits = await fetcher.fetch_commits(TimeWindow(start=start_date, end=end_date), span)
    prompt, _ = await StaticPromptSource().resolve(commits)
    return f"## System\n\n{prompt.system}\n\n## User\n\n{prompt.user}"


@app.command("generate")
def generate(
    start_date: str = typer.Argument(..., help="Window start (ISO-8601, e.g. 2024-01-01)"),
    end_date: str = typer.Argument(..., help="Window end (ISO-8601, e.g. 2024-01-07)"),
    model_name: str | None = typer.Option(None, "--model", help="Gemini model name"),
    seed: int | None = typer.Option(None, help="Deterministic seed hint for the model"),
    local_only: bool = typer.Option(False, help="Skip Gemini and use the local summarizer"),
    trace_file: Path | None = typer.Option(None, "--trace-file", help="Append span records to this JSONL file"),
    max_pages: int | None = typer.Option(None, min=1, help="Follow up to this many commit pages"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress at INFO level"),
) -> None:
    """Stream release notes for commits between START_DATE and END_DATE."""
    _configure_logging(verbose)
    settings = _load_settings()
    exporter: SpanExporter = JsonlSpanExporter(trace_file) if trace_file else LoggingSpanExporter()

    _echo_step(1, 2, f"Generating release notes for {start_date} .. {end_date}")
    try:
        asyncio.run(
            _stream_notes(
                settings,
                start_date,
                end_date,
                exporter=exporter,
                local_only=local_only,
                model_name=model_name,
                seed=seed,
                max_pages=max_pages,
            )
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except ReleaseNotesError as exc:
        raise _fail(exc) from exc
    _echo_step(2, 2, "Done")


@app.command("prompt")
def prompt(
    start_date: str = typer.Argument(..., help="Window start"),
    end_date: str = typer.Argument(..., help="Window end"),
    trace_file: Path | None = typer.Option(None, "--trace-file", help="Append the fetch span to this JSONL file"),
    max_pages: int | None = typer.Option(None, min=1, help="Follow up to this many commit pages"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress at INFO level"),
) -> None:
    """Print the prompt that would be sent to the model, without calling it."""
    _configure_logging(verbose)
    settings = _load_settings()
    exporter: SpanExporter = JsonlSpanExporter(trace_file) if trace_file else InMemorySpanExporter()
    try:
        text = asyncio.run(_build_prompt_text(settings, start_date, end_date, max_pages, exporter))
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except ReleaseNotesError as exc:
        raise _fail(exc) from exc
    typer.echo(text)


@app.command("doctor")
def doctor() -> None:
    """Print configuration diagnostics used by the CLI."""
    settings = _load_settings()
    typer.echo(f"GITHUB_ACCESS_TOKEN set: {bool(settings.github_token)}")
    typer.echo(f"Repository: {settings.repo_owner or '?'}/{settings.repo_name or '?'}")
    typer.echo(f"GEMINI_API_KEY set: {bool(settings.gemini_api_key)}")
    typer.echo(f"Model: {settings.model_name}")
    typer.echo(f"Prompt: {settings.prompt_slug or 'static'}")


if __name__ == "__main__":
    app()
