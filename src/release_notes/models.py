"""Pydantic models shared across fetching, prompting, generation, and tracing."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TimeWindow(BaseModel):
    """Commit window passed through to the source-control provider as-is."""

    model_config = ConfigDict(frozen=True)

    start: str
    end: str


class CommitRecord(BaseModel):
    """A compact, provider-independent view of one commit."""

    model_config = ConfigDict(frozen=True)

    sha: str
    url: str
    html_url: str
    author_name: str | None = None
    author_email: str | None = None
    author_date: str | None = None
    message: str


class PromptMessage(BaseModel):
    """System and user message pair handed to the model."""

    model_config = ConfigDict(frozen=True)

    system: str
    user: str

    def as_messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


class GenerationOptions(BaseModel):
    """Per-request model parameters."""

    model: str
    seed: int | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    def merged(self, params: dict[str, Any]) -> GenerationOptions:
        """Return a copy with known keys from ``params`` applied on top."""
        known = {key: value for key, value in params.items() if key in type(self).model_fields}
        if not known:
            return self
        return type(self).model_validate({**self.model_dump(), **known})


class SpanRecord(BaseModel):
    """Sealed snapshot of one traced stage."""

    project: str
    span_id: str
    parent_id: str | None = None
    root_id: str
    name: str
    input: Any = None
    output: Any = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    ended_at: datetime


# GitHub "list commits" payload. Only the fields the pipeline consumes are
# declared; everything else in the upstream schema is ignored.


class GitHubCommitAuthor(BaseModel):
    name: str | None = None
    email: str | None = None
    date: str | None = None


class GitHubCommitDetail(BaseModel):
    author: GitHubCommitAuthor | None = None
    message: str


class GitHubCommitItem(BaseModel):
    sha: str
    url: str
    html_url: str
    commit: GitHubCommitDetail

    def to_record(self) -> CommitRecord:
        author = self.commit.author
        return CommitRecord(
            sha=self.sha,
            url=self.url,
            html_url=self.html_url,
            author_name=author.name if author else None,
            author_email=author.email if author else None,
            author_date=author.date if author else None,
            message=self.commit.message,
        )
