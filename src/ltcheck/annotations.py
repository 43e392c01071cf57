"""Markup annotations and the plain-text view that is sent to the service.

A document is the original text plus a list of markup spans. The service is
sent the plain view, where each markup span is replaced by its
``interpret_as`` text (empty by default). ``TextView`` maps positions in the
plain view back to the original document.
"""

from __future__ import annotations

import bisect
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class MarkupSpan:
    """Non-text span ``original[start:end]`` (e.g. an HTML tag)."""

    start: int
    end: int
    interpret_as: str = ""


@dataclass(frozen=True)
class DataAnnotation:
    text: Optional[str] = None
    markup: Optional[str] = None
    interpret_as: Optional[str] = None

    @classmethod
    def new_text(cls, text: str) -> "DataAnnotation":
        return cls(text=text)

    @classmethod
    def new_markup(cls, markup: str, interpret_as: str | None = None) -> "DataAnnotation":
        return cls(markup=markup, interpret_as=interpret_as)

    def source_text(self) -> str:
        if self.text is not None:
            return self.text
        if self.markup is not None:
            return self.markup
        raise ValueError(f"Data annotation has neither text nor markup: {self!r}")

    def to_dict(self) -> dict[str, str]:
        out: dict[str, str] = {}
        if self.text is not None:
            out["text"] = self.text
        if self.markup is not None:
            out["markup"] = self.markup
        if self.interpret_as is not None:
            out["interpretAs"] = self.interpret_as
        return out


def parse_data(raw: str | dict[str, Any]) -> list[DataAnnotation]:
    """Parse a ``{"annotation": [{"text": ...}, {"markup": ..., "interpretAs": ...}]}`` document."""
    data = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(data, dict) or not isinstance(data.get("annotation"), list):
        raise ValueError("Annotated data must be an object with an 'annotation' list")
    out: list[DataAnnotation] = []
    for item in data["annotation"]:
        if not isinstance(item, dict):
            raise ValueError(f"Invalid data annotation: {item!r}")
        ann = DataAnnotation(
            text=(str(item["text"]) if item.get("text") is not None else None),
            markup=(str(item["markup"]) if item.get("markup") is not None else None),
            interpret_as=(str(item["interpretAs"]) if item.get("interpretAs") is not None else None),
        )
        ann.source_text()
        out.append(ann)
    return out


def annotations_to_document(annotations: Iterable[DataAnnotation]) -> tuple[str, list[MarkupSpan]]:
    """Concatenate annotations into the original document text and its markup spans."""
    parts: list[str] = []
    spans: list[MarkupSpan] = []
    pos = 0
    for ann in annotations:
        piece = ann.source_text()
        if ann.text is None and piece:
            spans.append(MarkupSpan(pos, pos + len(piece), ann.interpret_as or ""))
        parts.append(piece)
        pos += len(piece)
    return "".join(parts), spans


@dataclass(frozen=True)
class _Run:
    plain_start: int
    plain_end: int
    orig_start: int
    orig_end: int
    markup: bool


class TextView:
    def __init__(self, original: str, spans: Sequence[MarkupSpan]):
        self.original = original
        ordered = sorted(spans, key=lambda s: (s.start, s.end))
        prev_end = 0
        for span in ordered:
            if span.start < prev_end or span.start >= span.end or span.end > len(original):
                raise ValueError(
                    f"Invalid markup span [{span.start}, {span.end}) for document of length {len(original)}"
                )
            prev_end = span.end

        runs: list[_Run] = []
        pieces: list[str] = []
        protected: list[tuple[int, int]] = []
        plain_pos = 0
        orig_pos = 0

        def _add(text: str, orig_start: int, orig_end: int, markup: bool) -> None:
            nonlocal plain_pos
            if text:
                runs.append(_Run(plain_pos, plain_pos + len(text), orig_start, orig_end, markup))
                pieces.append(text)
            if markup:
                protected.append((plain_pos, plain_pos + len(text)))
            plain_pos += len(text)

        for span in ordered:
            if span.start > orig_pos:
                _add(original[orig_pos : span.start], orig_pos, span.start, False)
            _add(span.interpret_as, span.start, span.end, True)
            orig_pos = span.end
        if orig_pos < len(original):
            _add(original[orig_pos:], orig_pos, len(original), False)

        self.plain = "".join(pieces)
        self.protected = protected
        self._runs = runs
        self._starts = [r.plain_start for r in runs]

    def _run_at(self, pos: int) -> _Run:
        return self._runs[bisect.bisect_right(self._starts, pos) - 1]

    def to_original(self, pos: int) -> int:
        """Map a plain-view start position to the original document."""
        if pos >= len(self.plain):
            return len(self.original)
        run = self._run_at(pos)
        if run.markup:
            return run.orig_start
        return run.orig_start + (pos - run.plain_start)

    def to_original_end(self, pos: int) -> int:
        """Map an exclusive plain-view end position to the original document."""
        if pos <= 0:
            return self.to_original(0)
        run = self._run_at(pos - 1)
        if run.markup:
            return run.orig_end
        return run.orig_start + (pos - run.plain_start)
