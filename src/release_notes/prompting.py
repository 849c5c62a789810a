from __future__ import annotations

from typing import Any, Protocol, Sequence

from release_notes.models import CommitRecord, PromptMessage

MAX_MESSAGE_LENGTH = 2048
COMMITS_PREFIX = "Commits: \n"
UNKNOWN_DATE = "unknown"

SYSTEM_PROMPT = """You are an expert technical writer who generates release notes for a software project.
You will be provided a list of commits, including their message, author, and date, and you will generate
a full list of release notes, in markdown list format, across the commits. You should make sure to include
some information about each commit, without the commit sha, url, or author info. However, do not mention
version bumps multiple times. If there are multiple version bumps, only mention the latest one."""


def truncate_utf16(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Keep at most ``limit`` UTF-16 code units of ``text``.

    Characters outside the BMP count as two units. A surrogate pair that would
    be split by the limit is dropped whole, so the result is always valid text.
    """
    if len(text) <= limit // 2:
        return text
    encoded = text.encode("utf-16-le")
    if len(encoded) <= limit * 2:
        return text
    return encoded[: limit * 2].decode("utf-16-le", errors="ignore")


def serialize_commit(commit: CommitRecord) -> str:
    """Render one commit as ``SHA``, ``DATE`` and ``MESSAGE`` lines.

    Args:
        commit: The commit to render.

    Returns:
        Three lines. The message is truncated to ``MAX_MESSAGE_LENGTH`` UTF-16
        code units and a missing date is written as ``unknown``.
    """
    return "\n".join(
        [
            f"SHA: {commit.sha}",
            f"DATE: {commit.author_date or UNKNOWN_DATE}",
            f"MESSAGE: {truncate_utf16(commit.message)}",
        ]
    )


def serialize_commits(commits: Sequence[CommitRecord]) -> str:
    """Join serialized commits with a blank line, keeping their order."""
    return "\n\n".join(serialize_commit(commit) for commit in commits)


def build_system_prompt() -> str:
    """Return the release-notes policy used when no template overrides it."""
    return SYSTEM_PROMPT


def build_prompt(commits: Sequence[CommitRecord], system_prompt: str | None = None) -> PromptMessage:
    """Build the message pair for ``commits`` in the order given."""
    return PromptMessage(
        system=system_prompt or build_system_prompt(),
        user=COMMITS_PREFIX + serialize_commits(commits),
    )


class PromptSource(Protocol):
    async def resolve(self, commits: Sequence[CommitRecord]) -> tuple[PromptMessage, dict[str, Any]]: ...


class StaticPromptSource:
    """Prompt source backed by a fixed system instruction."""

    def __init__(self, system_prompt: str | None = None):
        self.system_prompt = system_prompt or build_system_prompt()

    async def resolve(self, commits: Sequence[CommitRecord]) -> tuple[PromptMessage, dict[str, Any]]:
        return build_prompt(commits, system_prompt=self.system_prompt), {}
