"""ltcheck - split long texts into LanguageTool-sized requests and merge the results."""

from .errors import CancellationError, EngineError, FragmentationError, OffsetContractError, TransportError
from .pipeline import check, check_data

__all__ = [
    "CancellationError",
    "EngineError",
    "FragmentationError",
    "OffsetContractError",
    "TransportError",
    "check",
    "check_data",
]
