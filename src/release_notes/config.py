"""Application configuration using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_GEMINI_KEY_FILE = Path(".api_keys/Gemini.md")
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_PROJECT = "Release notes prod"


class Settings(BaseSettings):
    """Settings loaded from environment variables and an optional ``.env``.

    Nothing is required at load time so that ``doctor`` can report partial
    setups; call ``require_repository`` before talking to GitHub.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    github_token: str | None = Field(default=None, validation_alias=AliasChoices("github_token", "GITHUB_ACCESS_TOKEN"))
    repo_owner: str | None = Field(default=None, validation_alias=AliasChoices("repo_owner", "REPO_OWNER"))
    repo_name: str | None = Field(default=None, validation_alias=AliasChoices("repo_name", "REPO_NAME"))
    gemini_api_key: str | None = Field(default=None, validation_alias=AliasChoices("gemini_api_key", "GEMINI_API_KEY"))
    gemini_key_file: Path = Field(
        default=DEFAULT_GEMINI_KEY_FILE,
        validation_alias=AliasChoices("gemini_key_file", "GEMINI_KEY_FILE"),
    )
    model_name: str = Field(default=DEFAULT_MODEL, validation_alias=AliasChoices("model_name", "RELEASE_NOTES_MODEL"))
    seed: int | None = Field(default=None, validation_alias=AliasChoices("seed", "RELEASE_NOTES_SEED"))
    per_page: int = Field(default=100, ge=1, le=100, validation_alias=AliasChoices("per_page", "RELEASE_NOTES_PER_PAGE"))
    max_pages: int = Field(default=1, ge=1, validation_alias=AliasChoices("max_pages", "RELEASE_NOTES_MAX_PAGES"))
    project_name: str = Field(
        default=DEFAULT_PROJECT,
        validation_alias=AliasChoices("project_name", "RELEASE_NOTES_PROJECT"),
    )
    prompt_registry_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("prompt_registry_url", "PROMPT_REGISTRY_URL"),
    )
    prompt_registry_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("prompt_registry_api_key", "PROMPT_REGISTRY_API_KEY"),
    )
    prompt_slug: str | None = Field(default=None, validation_alias=AliasChoices("prompt_slug", "PROMPT_SLUG"))

    @model_validator(mode="after")
    def _fallback_key_file(self) -> Settings:
        if not self.gemini_api_key and self.gemini_key_file.exists():
            self.gemini_api_key = self.gemini_key_file.read_text(encoding="utf-8").strip() or None
        return self

    def require_repository(self) -> tuple[str, str, str]:
        """Return ``(token, owner, repo)`` or raise naming the missing variable."""
        missing = [
            name
            for name, value in (
                ("GITHUB_ACCESS_TOKEN", self.github_token),
                ("REPO_OWNER", self.repo_owner),
                ("REPO_NAME", self.repo_name),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required setting(s): {', '.join(missing)}")
        return self.github_token, self.repo_owner, self.repo_name  # type: ignore[return-value]
