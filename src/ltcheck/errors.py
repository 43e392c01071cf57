from __future__ import annotations


class EngineError(RuntimeError):
    """Base class for every failure surfaced by ``ltcheck.check``."""


class FragmentationError(EngineError):
    """A split had to fall back to a raw character cut.

    Recorded on the split result rather than raised, unless strict splitting
    is requested.
    """

    def __init__(self, message: str, *, position: int, fragment_index: int, reason: str = "oversized_token"):
        super().__init__(message)
        self.position = position
        self.fragment_index = fragment_index
        self.reason = reason

    def to_dict(self) -> dict[str, object]:
        return {
            "fragment_index": self.fragment_index,
            "position": self.position,
            "reason": self.reason,
            "message": str(self),
        }


class TransportError(EngineError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool = False,
        fragment_index: int | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.retryable = retryable
        self.fragment_index = fragment_index


class OffsetContractError(EngineError):
    """The service reported a position outside the fragment it was sent."""

    def __init__(self, fragment_index: int, local_offset: int, fragment_length: int):
        super().__init__(
            f"Fragment {fragment_index}: reported position {local_offset} "
            f"is outside fragment of length {fragment_length}"
        )
        self.fragment_index = fragment_index
        self.local_offset = local_offset
        self.fragment_length = fragment_length


class CancellationError(EngineError):
    pass
