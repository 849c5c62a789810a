"""Remote prompt templates resolved by project name and slug."""

from __future__ import annotations

import logging
from typing import Any, Literal, Sequence

import httpx
from pydantic import BaseModel, Field, ValidationError

from release_notes.errors import AuthorizationError, UpstreamUnavailable
from release_notes.models import CommitRecord, PromptMessage
from release_notes.prompting import serialize_commits

logger = logging.getLogger(__name__)


class TemplateMessage(BaseModel):
    role: Literal["system", "user"]
    content: str


class PromptTemplate(BaseModel):
    """A stored prompt: chat messages with ``{{placeholders}}`` plus model params."""

    slug: str
    messages: list[TemplateMessage] = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    def build(self, project: str, commits: Sequence[CommitRecord]) -> tuple[PromptMessage, dict[str, Any]]:
        """Render the template for ``commits``.

        ``{{project}}`` and ``{{commits}}`` are substituted in every message.
        Multiple messages with the same role are joined by a blank line.

        Raises:
            ValueError: If the template has no system or no user message.
        """
        values = {"project": project, "commits": serialize_commits(commits)}
        by_role: dict[str, list[str]] = {"system": [], "user": []}
        for message in self.messages:
            by_role[message.role].append(_render(message.content, values))
        if not by_role["system"] or not by_role["user"]:
            raise ValueError(f"Prompt template {self.slug!r} needs both a system and a user message.")
        prompt = PromptMessage(system="\n\n".join(by_role["system"]), user="\n\n".join(by_role["user"]))
        return prompt, dict(self.params)


def _render(template: str, values: dict[str, str]) -> str:
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{{" + key + "}}", value).replace("{{ " + key + " }}", value)
    return rendered


def build_registry_client(base_url: str, api_key: str | None = None, timeout: float = 30.0) -> httpx.AsyncClient:
    """Create an async client for the prompt registry.

    Args:
        base_url: Registry root, for example ``https://prompts.example.com``.
        api_key: Optional bearer token.
        timeout: Per-request timeout in seconds.

    Returns:
        A client the caller is responsible for closing.
    """
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)


class PromptRegistry:
    """Loads prompt templates from ``GET /prompts/{project}/{slug}``."""

    def __init__(self, client: httpx.AsyncClient, project_name: str):
        self.client = client
        self.project_name = project_name

    async def load(self, slug: str) -> PromptTemplate:
        """Fetch and validate the template stored under ``slug``.

        Args:
            slug: Template name within this project.

        Returns:
            The parsed template.

        Raises:
            AuthorizationError: If the registry rejects the API key.
            UpstreamUnavailable: If the request fails or the payload is not a template.
        """
        path = f"/prompts/{self.project_name}/{slug}"
        try:
            response = await self.client.get(path)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Prompt registry request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthorizationError(f"Prompt registry rejected credentials ({response.status_code})")
        if response.status_code != 200:
            raise UpstreamUnavailable(f"Prompt registry error ({response.status_code}): {response.text}")

        try:
            payload = response.json()
            payload.setdefault("slug", slug)
            return PromptTemplate.model_validate(payload)
        except (ValueError, AttributeError, ValidationError) as exc:
            raise UpstreamUnavailable(f"Prompt {slug!r} has an invalid template: {exc}") from exc


class RegistryPromptSource:
    """Prompt source that fetches a named template for every resolution."""

    def __init__(self, registry: PromptRegistry, slug: str):
        self.registry = registry
        self.slug = slug

    async def resolve(self, commits: Sequence[CommitRecord]) -> tuple[PromptMessage, dict[str, Any]]:
        """Load the template and render it for ``commits``.

        Raises:
            UpstreamUnavailable: If the template cannot be loaded or lacks a role.
        """
        template = await self.registry.load(self.slug)
        logger.info("Loaded prompt %s/%s", self.registry.project_name, self.slug)
        try:
            return template.build(self.registry.project_name, commits)
        except ValueError as exc:
            raise UpstreamUnavailable(str(exc)) from exc
