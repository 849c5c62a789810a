"""Nested input/output spans threaded explicitly through each pipeline stage."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from release_notes.models import SpanRecord

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class SpanExporter(Protocol):
    def export(self, record: SpanRecord) -> None: ...


class LoggingSpanExporter:
    """Emit each sealed span as one JSON log line."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def export(self, record: SpanRecord) -> None:
        logger.log(self.level, "span %s", record.model_dump_json())


class JsonlSpanExporter:
    """Append sealed spans to a JSON-lines file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def export(self, record: SpanRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record.model_dump(mode="json"), ensure_ascii=False))
            handle.write("\n")


class InMemorySpanExporter:
    """Keep sealed spans in a list, in the order they ended."""

    def __init__(self) -> None:
        self.records: list[SpanRecord] = []

    def export(self, record: SpanRecord) -> None:
        self.records.append(record)

    def by_name(self, name: str) -> SpanRecord:
        for record in self.records:
            if record.name == name:
                return record
        raise KeyError(name)


class Span:
    """One traced stage.

    A span collects an input snapshot when it starts and an output snapshot
    once the stage knows its result. ``end`` seals it and hands the record to
    the exporter; later calls to ``log`` or ``end`` are ignored.
    """

    def __init__(
        self,
        name: str,
        exporter: SpanExporter,
        project: str,
        parent: Span | None = None,
        input: Any = None,
    ):
        self.name = name
        self.project = project
        self.span_id = uuid.uuid4().hex
        self.parent_id = parent.span_id if parent else None
        self.root_id = parent.root_id if parent else self.span_id
        self.input = input
        self.output: Any = None
        self.error: str | None = None
        self.metadata: dict[str, Any] = {}
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None
        self._exporter = exporter

    @property
    def ended(self) -> bool:
        return self.ended_at is not None

    def start_span(self, name: str, input: Any = None) -> Span:
        """Open a child span that shares this span's root and exporter."""
        return Span(name, self._exporter, self.project, parent=self, input=input)

    def log(
        self,
        *,
        input: Any = _UNSET,
        output: Any = _UNSET,
        error: BaseException | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record fields on the span before it ends.

        Args:
            input: Replaces the input snapshot when given.
            output: Replaces the output snapshot when given. ``None`` is a valid value.
            error: Exception or message; exceptions are stored as ``"Type: message"``.
            metadata: Merged into existing metadata.

        Calls after ``end`` are ignored.
        """
        if self.ended:
            logger.debug("ignoring log on ended span %s", self.name)
            return
        if input is not _UNSET:
            self.input = input
        if output is not _UNSET:
            self.output = output
        if error is not None:
            self.error = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        if metadata:
            self.metadata.update(metadata)

    def end(self) -> None:
        """Seal the span and hand it to the exporter. Later calls do nothing."""
        if self.ended:
            return
        self.ended_at = datetime.now(timezone.utc)
        self._exporter.export(self.to_record())

    def to_record(self) -> SpanRecord:
        return SpanRecord(
            project=self.project,
            span_id=self.span_id,
            parent_id=self.parent_id,
            root_id=self.root_id,
            name=self.name,
            input=self.input,
            output=self.output,
            error=self.error,
            metadata=dict(self.metadata),
            started_at=self.started_at,
            ended_at=self.ended_at or datetime.now(timezone.utc),
        )

    def __enter__(self) -> Span:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            self.log(error=exc)
        self.end()


class Tracer:
    """Factory for root spans belonging to one project."""

    def __init__(self, project_name: str, exporter: SpanExporter | None = None):
        self.project_name = project_name
        self.exporter: SpanExporter = exporter or LoggingSpanExporter()

    def start_span(self, name: str, input: Any = None) -> Span:
        """Open a new root span."""
        return Span(name, self.exporter, self.project_name, input=input)
