from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, AsyncIterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from release_notes.models import CommitRecord, GenerationOptions, PromptMessage
from release_notes.tracing import InMemorySpanExporter, Tracer


def github_commit(sha: str, message: str, date: str | None = "2024-01-02T10:00:00Z") -> dict[str, Any]:
    author = None if date is None else {"name": "Alice", "email": "alice@example.com", "date": date}
    return {
        "sha": sha,
        "url": f"https://api.github.com/repos/acme/widgets/commits/{sha}",
        "html_url": f"https://github.com/acme/widgets/commit/{sha}",
        "node_id": "ignored",
        "commit": {
            "author": author,
            "committer": {"name": "GitHub", "date": date},
            "message": message,
            "tree": {"sha": "t" * 40},
        },
        "parents": [],
    }


async def iterate(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class FakeGenerator:
    """Generator double that replays fixed chunks and records its inputs."""

    def __init__(self, chunks: list[bytes] | None = None, error: Exception | None = None):
        self.chunks = chunks if chunks is not None else [b"Hello", b" world"]
        self.error = error
        self.calls: list[tuple[PromptMessage, GenerationOptions]] = []
        self.closed = False

    async def generate(self, prompt: PromptMessage, options: GenerationOptions) -> AsyncIterator[bytes]:
        self.calls.append((prompt, options))
        if self.error is not None:
            raise self.error
        return self._stream()

    async def _stream(self) -> AsyncIterator[bytes]:
        try:
            for chunk in self.chunks:
                yield chunk
        finally:
            self.closed = True


@pytest.fixture
def github_payload() -> list[dict[str, Any]]:
    return [
        github_commit("c" * 40, "Bump version to 1.4.0"),
        github_commit("b" * 40, "Fix crash when config is empty\n\nLonger body text."),
        github_commit("a" * 40, "Add streaming output", date=None),
    ]


@pytest.fixture
def sample_commits() -> list[CommitRecord]:
    return [
        CommitRecord(
            sha="c" * 40,
            url="https://api.github.com/repos/acme/widgets/commits/" + "c" * 40,
            html_url="https://github.com/acme/widgets/commit/" + "c" * 40,
            author_name="Alice",
            author_email="alice@example.com",
            author_date="2024-01-03T10:00:00Z",
            message="Bump version to 1.4.0",
        ),
        CommitRecord(
            sha="b" * 40,
            url="https://api.github.com/repos/acme/widgets/commits/" + "b" * 40,
            html_url="https://github.com/acme/widgets/commit/" + "b" * 40,
            author_name="Bob",
            author_date="2024-01-02T10:00:00Z",
            message="Fix crash when config is empty",
        ),
        CommitRecord(
            sha="a" * 40,
            url="https://api.github.com/repos/acme/widgets/commits/" + "a" * 40,
            html_url="https://github.com/acme/widgets/commit/" + "a" * 40,
            message="Add streaming output",
        ),
    ]


@pytest.fixture
def exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer(exporter: InMemorySpanExporter) -> Tracer:
    return Tracer("release-notes-test", exporter)
