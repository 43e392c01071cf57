from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

from .annotations import TextView
from .errors import OffsetContractError
from .models import OffsetMapEntry


class OffsetMap:
    """Immutable table translating fragment-local positions to document positions.

    Without a view, ``global = base_offset[i] + local``. With a ``TextView``
    the result is additionally mapped from the plain view sent to the service
    back to the original (markup-bearing) document.
    """

    def __init__(self, entries: Sequence[OffsetMapEntry], view: Optional[TextView] = None):
        self._entries = tuple(entries)
        for i, entry in enumerate(self._entries):
            if entry.fragment_index != i:
                raise ValueError(f"Offset map entry {i} has fragment_index {entry.fragment_index}")
        self.view = view

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> OffsetMapEntry:
        return self._entries[index]

    @property
    def entries(self) -> tuple[OffsetMapEntry, ...]:
        return self._entries

    @property
    def overlapping(self) -> bool:
        return any(e.overlap_with_previous > 0 for e in self._entries)

    def _check(self, fragment_index: int, local_offset: int) -> OffsetMapEntry:
        entry = self._entries[fragment_index]
        if local_offset < 0 or local_offset > entry.length:
            raise OffsetContractError(fragment_index, local_offset, entry.length)
        return entry

    def to_global(self, fragment_index: int, local_offset: int) -> int:
        entry = self._check(fragment_index, local_offset)
        pos = entry.base_offset + local_offset
        if self.view is not None:
            return self.view.to_original(pos)
        return pos

    def span_to_global(self, fragment_index: int, local_offset: int, length: int) -> tuple[int, int]:
        """Translate a local ``(offset, length)`` span; returns the global ``(offset, length)``."""
        entry = self._check(fragment_index, local_offset)
        self._check(fragment_index, local_offset + length)
        start = entry.base_offset + local_offset
        if self.view is None:
            return start, length
        global_start = self.view.to_original(start)
        global_end = self.view.to_original_end(start + length) if length else global_start
        return global_start, global_end - global_start
