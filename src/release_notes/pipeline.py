"""Compose fetching, prompting, generation, and the tee under one trace."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Sequence

import httpx
from pydantic import ValidationError

from release_notes.commits import CommitFetcher, build_github_client
from release_notes.config import Settings
from release_notes.errors import UpstreamUnavailable
from release_notes.generator import GeminiGenerator, Generator, LocalGenerator
from release_notes.models import GenerationOptions, TimeWindow
from release_notes.prompt_registry import PromptRegistry, RegistryPromptSource, build_registry_client
from release_notes.prompting import PromptSource, StaticPromptSource
from release_notes.tee import TeeSink
from release_notes.tracing import Span, SpanExporter, Tracer

logger = logging.getLogger(__name__)

ROOT_SPAN = "generate-release-notes"
FETCH_SPAN = "get-commits"


class ReleaseNotesPipeline:
    """Turns a commit window into a stream of release-notes text.

    Every collaborator is passed in, so each call to ``run`` builds its own
    span tree, commit list, prompt, and stream with no shared mutable state.
    """

    def __init__(
        self,
        fetcher: CommitFetcher,
        generator: Generator,
        tracer: Tracer,
        options: GenerationOptions,
        prompt_source: PromptSource | None = None,
        owned_clients: Sequence[httpx.AsyncClient] = (),
    ):
        self.fetcher = fetcher
        self.generator = generator
        self.tracer = tracer
        self.options = options
        self.prompt_source = prompt_source or StaticPromptSource()
        self._owned_clients = list(owned_clients)

    async def run(self, window: TimeWindow) -> AsyncIterator[bytes]:
        """Start one pipeline run and return the consumer-facing stream.

        Fetching, prompt resolution, and the start of generation happen before
        this returns, so their failures raise here and no stream is produced.

        Raises:
            AuthorizationError: Credentials were rejected by an upstream API.
            UpstreamUnavailable: Commits or the prompt template could not be loaded,
                or the template carried invalid model parameters.
            ModelUnavailable: The model failed before the first chunk.
        """
        root = self.tracer.start_span(ROOT_SPAN, input={"start_date": window.start, "end_date": window.end})
        try:
            with root.start_span(FETCH_SPAN) as fetch_span:
                commits = await self.fetcher.fetch_commits(window, fetch_span)

            prompt, params = await self.prompt_source.resolve(commits)
            try:
                options = self.options.merged(params)
            except ValidationError as exc:
                label = getattr(self.prompt_source, "slug", type(self.prompt_source).__name__)
                raise UpstreamUnavailable(f"Prompt {label!r} has invalid model parameters: {exc}") from exc
            root.log(metadata={"commit_count": len(commits), "model": options.model, "seed": options.seed})

            source = await self.generator.generate(prompt, options)
        except BaseException as exc:
            root.log(error=exc)
            root.end()
            raise

        tee = TeeSink(
            source,
            on_complete=lambda text: _seal_output(root, text),
            on_error=lambda exc, forwarded: _seal_error(root, exc, forwarded),
            on_cancel=lambda forwarded: _seal_cancelled(root, forwarded),
        )
        return tee.stream()

    async def aclose(self) -> None:
        """Close the HTTP clients this pipeline created."""
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients.clear()

    async def __aenter__(self) -> ReleaseNotesPipeline:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _seal_output(root: Span, text: str) -> None:
    root.log(output=text)
    root.end()


def _seal_error(root: Span, exc: BaseException, forwarded: int) -> None:
    root.log(error=exc, metadata={"chunks_forwarded": forwarded})
    root.end()


def _seal_cancelled(root: Span, forwarded: int) -> None:
    root.log(metadata={"cancelled": True, "chunks_forwarded": forwarded})
    root.end()


async def generate_release_notes(
    pipeline: ReleaseNotesPipeline,
    start_date: str,
    end_date: str,
) -> AsyncIterator[bytes]:
    """Entry point: UTF-8 release notes for commits between two dates."""
    return await pipeline.run(TimeWindow(start=start_date, end=end_date))


def build_pipeline(
    settings: Settings,
    *,
    exporter: SpanExporter | None = None,
    local_only: bool = False,
    model_name: str | None = None,
    seed: int | None = None,
    max_pages: int | None = None,
) -> ReleaseNotesPipeline:
    """Wire configured clients into a pipeline.

    Raises:
        ValueError: If the repository settings are incomplete.
    """
    token, owner, repo = settings.require_repository()
    if settings.prompt_slug and not settings.prompt_registry_url:
        raise ValueError("PROMPT_SLUG is set but PROMPT_REGISTRY_URL is missing")

    github = build_github_client(token)
    owned: list[httpx.AsyncClient] = [github]

    fetcher = CommitFetcher(
        github,
        owner=owner,
        repo=repo,
        per_page=settings.per_page,
        max_pages=max_pages or settings.max_pages,
    )

    generator: Generator
    if local_only:
        generator = LocalGenerator()
    else:
        generator = GeminiGenerator(api_key=settings.gemini_api_key)

    prompt_source: PromptSource | None = None
    if settings.prompt_slug and settings.prompt_registry_url:
        registry_client = build_registry_client(settings.prompt_registry_url, settings.prompt_registry_api_key)
        owned.append(registry_client)
        prompt_source = RegistryPromptSource(
            PromptRegistry(registry_client, project_name=settings.project_name),
            slug=settings.prompt_slug,
        )

    options = GenerationOptions(
        model=model_name or settings.model_name,
        seed=seed if seed is not None else settings.seed,
    )
    logger.info("Pipeline ready for %s/%s (model=%s, local=%s)", owner, repo, options.model, local_only)
    return ReleaseNotesPipeline(
        fetcher=fetcher,
        generator=generator,
        tracer=Tracer(settings.project_name, exporter),
        options=options,
        prompt_source=prompt_source,
        owned_clients=owned,
    )
