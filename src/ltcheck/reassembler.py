from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import Optional

from .models import CheckResponse, DetectedLanguage, LanguageVote, Match, UnifiedResult
from .offset_map import OffsetMap

_logger = logging.getLogger(__name__)


def _vote_language(votes: list[LanguageVote]) -> Optional[DetectedLanguage]:
    best: Optional[LanguageVote] = None
    for vote in votes:
        if not vote.code:
            continue
        if best is None or vote.fragment_length > best.fragment_length:
            best = vote
    if best is None:
        return None
    return DetectedLanguage(code=best.code, name=best.name)


def _dedupe(matches: list[Match]) -> list[Match]:
    seen: set[tuple[int, int]] = set()
    out: list[Match] = []
    for m in matches:
        key = (m.offset, m.length)
        if key in seen:
            continue
        seen.add(key)
        out.append(m)
    return out


def annotate_positions(text: str, matches: Sequence[Match]) -> list[Match]:
    """Attach 1-based line numbers and 0-based line offsets; ``matches`` must be sorted by offset."""
    out: list[Match] = []
    line_number = 1
    line_start = 0
    pos = 0
    for m in matches:
        if m.offset < pos:
            raise ValueError("matches must be sorted by offset")
        if m.offset > len(text):
            raise ValueError(f"match offset {m.offset} is beyond text of length {len(text)}")
        newlines = text.count("\n", pos, m.offset)
        if newlines:
            line_number += newlines
            line_start = text.rfind("\n", pos, m.offset) + 1
        pos = m.offset
        out.append(replace(m, line_number=line_number, line_offset=m.offset - line_start))
    return out


def merge(
    responses: Sequence[CheckResponse],
    offset_map: OffsetMap,
    *,
    text: Optional[str] = None,
) -> UnifiedResult:
    """Merge per-fragment responses (in fragment order) into one document-level result.

    ``text`` is the original document; when given, matches get line/column positions.
    """
    if len(responses) != len(offset_map):
        raise ValueError(f"Got {len(responses)} response(s) for {len(offset_map)} fragment(s)")

    collected: list[Match] = []
    votes: list[LanguageVote] = []
    sentence_ranges: list[tuple[int, int]] = []
    incomplete = False
    for index, resp in enumerate(responses):
        entry = offset_map[index]
        for m in resp.matches:
            offset, length = offset_map.span_to_global(index, m.offset, m.length)
            collected.append(replace(m, offset=offset, length=length, fragment_index=index))
        for start, end in resp.sentence_ranges:
            g_start, g_len = offset_map.span_to_global(index, start, end - start)
            sentence_ranges.append((g_start, g_start + g_len))
        detected = resp.language.detected
        votes.append(LanguageVote(index, detected.code, detected.name, entry.length))
        incomplete = incomplete or resp.incomplete_results

    # Stable: ties keep fragment emission order.
    collected.sort(key=lambda m: m.offset)
    if offset_map.overlapping:
        before = len(collected)
        collected = _dedupe(collected)
        sentence_ranges = sorted(set(sentence_ranges))
        if before != len(collected):
            _logger.debug("Dropped %d duplicate match(es) from overlapping fragments", before - len(collected))
    if text is not None:
        collected = annotate_positions(text, collected)

    return UnifiedResult(
        matches=collected,
        language=_vote_language(votes),
        language_votes=votes,
        requested_language=(responses[0].language if responses else None),
        software=(responses[0].software if responses else None),
        sentence_ranges=sentence_ranges,
        incomplete_results=incomplete,
        fragment_count=len(responses),
    )
