"""Split text into fragments that fit the checking service's request size limit.

Cut points are searched right-to-left inside the window ``(lo, start + limit]``
and ranked: paragraph breaks (and markup span edges) first, then sentence
ends, then whitespace, and only as a last resort a raw character cut.

No cut is placed inside a grapheme cluster: combining marks, variation
selectors, emoji modifiers and tag sequences, ZWJ sequences, regional
indicator pairs, Hangul jamo sequences and CRLF stay together.
"""

from __future__ import annotations

import bisect
import logging
import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass, field

from .errors import FragmentationError
from .models import Fragment, OffsetMapEntry

_logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"\n[^\S\n]*\n\s*")
_SENTENCE_RE = re.compile(r"[.!?…][\"'”’)\]]*\s+|[。！？][\"'”’）」』]*\s*")
_ZWJ = "\u200d"

CUT_PARAGRAPH = "paragraph"
CUT_SENTENCE = "sentence"
CUT_WORD = "word"
CUT_RAW = "raw"
CUT_END = "end"


@dataclass
class SplitResult:
    fragments: list[Fragment] = field(default_factory=list)
    entries: list[OffsetMapEntry] = field(default_factory=list)
    degraded: list[FragmentationError] = field(default_factory=list)

    @property
    def overlapping(self) -> bool:
        return any(e.overlap_with_previous > 0 for e in self.entries)


def _joins_previous(ch: str) -> bool:
    if ch == _ZWJ or "\ufe00" <= ch <= "\ufe0f":
        return True
    # Emoji skin tone modifiers and tag characters (subdivision flags).
    if "\U0001f3fb" <= ch <= "\U0001f3ff" or "\U000e0020" <= ch <= "\U000e007f":
        return True
    return unicodedata.combining(ch) != 0 or unicodedata.category(ch) in {"Mn", "Mc", "Me"}


def _is_regional_indicator(ch: str) -> bool:
    return "\U0001f1e6" <= ch <= "\U0001f1ff"


def _hangul_type(ch: str) -> str:
    if "\u1100" <= ch <= "\u115f" or "\ua960" <= ch <= "\ua97f":
        return "L"
    if "\u1160" <= ch <= "\u11a7" or "\ud7b0" <= ch <= "\ud7c6":
        return "V"
    if "\u11a8" <= ch <= "\u11ff" or "\ud7cb" <= ch <= "\ud7fb":
        return "T"
    if "\uac00" <= ch <= "\ud7a3":
        return "LV" if (ord(ch) - 0xAC00) % 28 == 0 else "LVT"
    return ""


def _hangul_joins(prev: str, cur: str) -> bool:
    a, b = _hangul_type(prev), _hangul_type(cur)
    if not a or not b:
        return False
    if a == "L":
        return b in {"L", "V", "LV", "LVT"}
    if a in {"LV", "V"}:
        return b in {"V", "T"}
    return b == "T"


class Fragmenter:
    def __init__(
        self,
        text: str,
        limit: int,
        *,
        protected: Sequence[tuple[int, int]] = (),
        overlap: int = 0,
        strict: bool = False,
        split_pattern: str | None = None,
    ):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if overlap < 0 or (overlap and overlap >= limit):
            raise ValueError(f"overlap must be in [0, limit), got {overlap} for limit {limit}")
        self.text = text
        self.limit = int(limit)
        self.overlap = int(overlap)
        self.strict = strict

        spans = sorted((int(s), int(e)) for s, e in protected)
        for (_, prev_end), (start, end) in zip(spans, spans[1:]):
            if start < prev_end:
                raise ValueError(f"protected spans overlap at {start}")
        self._span_starts = [s for s, _ in spans]
        self._spans = spans

        markup_edges = {p for span in spans for p in span}
        paragraph_cuts = {m.end() for m in _PARAGRAPH_RE.finditer(text)}
        if split_pattern:
            paragraph_cuts.update(m.end() for m in re.finditer(re.escape(split_pattern), text))
        self._strong = sorted(paragraph_cuts | markup_edges)
        self._sentence = [m.end() for m in _SENTENCE_RE.finditer(text)]

    def _in_protected(self, pos: int) -> bool:
        k = bisect.bisect_right(self._span_starts, pos) - 1
        if k < 0:
            return False
        start, end = self._spans[k]
        return start < pos < end

    def _on_cluster_boundary(self, pos: int) -> bool:
        if pos <= 0 or pos >= len(self.text):
            return True
        prev, cur = self.text[pos - 1], self.text[pos]
        if prev == "\r" and cur == "\n":
            return False
        if prev == _ZWJ:
            return False
        if _is_regional_indicator(prev) and _is_regional_indicator(cur):
            # Flags pair up from the start of a regional indicator run.
            run = 0
            k = pos - 1
            while k >= 0 and _is_regional_indicator(self.text[k]):
                run += 1
                k -= 1
            return run % 2 == 0
        if _hangul_joins(prev, cur):
            return False
        return not _joins_previous(cur)

    def _can_cut(self, pos: int) -> bool:
        return self._on_cluster_boundary(pos) and not self._in_protected(pos)

    def _rightmost(self, positions: list[int], lo: int, hi: int) -> int | None:
        k = bisect.bisect_right(positions, hi) - 1
        while k >= 0 and positions[k] > lo:
            if self._can_cut(positions[k]):
                return positions[k]
            k -= 1
        return None

    def _find_cut(self, lo: int, hi: int, index: int, degraded: list[FragmentationError]) -> tuple[int, str]:
        for kind, positions in ((CUT_PARAGRAPH, self._strong), (CUT_SENTENCE, self._sentence)):
            pos = self._rightmost(positions, lo, hi)
            if pos is not None:
                return pos, kind

        text = self.text
        for pos in range(hi, lo, -1):
            if text[pos - 1].isspace() and self._can_cut(pos):
                return pos, CUT_WORD

        pos, reason = hi, "oversized_cluster"
        for candidate in range(hi, lo, -1):
            if self._can_cut(candidate):
                pos, reason = candidate, "oversized_token"
                break
        else:
            for candidate in range(hi, lo, -1):
                if self._on_cluster_boundary(candidate):
                    pos, reason = candidate, "protected_span"
                    break

        err = FragmentationError(
            f"No safe split point in window ({lo}, {hi}]; raw cut at {pos}",
            position=pos,
            fragment_index=index,
            reason=reason,
        )
        if self.strict:
            raise err
        _logger.warning("Degraded split for fragment %d: raw cut at %d (%s)", index, pos, reason)
        degraded.append(err)
        return pos, CUT_RAW

    def _overlap_start(self, cut: int, prev_start: int) -> int:
        # The next fragment must start strictly after the previous one.
        lo = max(cut - self.overlap, prev_start + 1)
        for pos in range(lo, cut):
            if self.text[pos - 1].isspace() and self._can_cut(pos):
                return pos
        for pos in range(lo, cut):
            if self._can_cut(pos):
                return pos
        return cut

    def split(self) -> SplitResult:
        text = self.text
        n = len(text)
        result = SplitResult()
        if n == 0:
            return result
        if n <= self.limit:
            result.fragments.append(Fragment(0, 0, n, text, CUT_END))
            result.entries.append(OffsetMapEntry(0, 0, n, 0))
            return result

        start = 0
        prev_cut = 0
        index = 0
        while True:
            hi = start + self.limit
            if hi >= n:
                cut, kind = n, CUT_END
            else:
                cut, kind = self._find_cut(max(start, prev_cut), hi, index, result.degraded)
            overlap = prev_cut - start if index else 0
            result.fragments.append(Fragment(index, start, cut, text[start:cut], kind))
            result.entries.append(OffsetMapEntry(index, start, cut - start, overlap))
            _logger.debug("Fragment %d: [%d, %d) cut=%s overlap=%d", index, start, cut, kind, overlap)
            if cut >= n:
                break
            prev_cut = cut
            start = self._overlap_start(cut, start) if self.overlap else cut
            index += 1
        return result


def split(
    text: str,
    limit: int,
    *,
    protected: Sequence[tuple[int, int]] = (),
    overlap: int = 0,
    strict: bool = False,
    split_pattern: str | None = None,
) -> SplitResult:
    """Split ``text`` into ordered fragments of at most ``limit`` characters.

    ``protected`` lists ``[start, end)`` spans that must not be cut (markup
    placeholders); their edges are preferred cut points. ``overlap`` > 0
    enables overlapping windows: each fragment after the first starts up to
    ``overlap`` characters before the previous cut. Every occurrence of the
    literal ``split_pattern`` is an extra cut point ranked with paragraph breaks.
    """
    return Fragmenter(
        text, limit, protected=protected, overlap=overlap, strict=strict, split_pattern=split_pattern
    ).split()
