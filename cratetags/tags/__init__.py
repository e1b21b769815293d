"""Tags generation and merging."""

from .generator import TagGenerator, TagsBuffer, TagsRequest, needs_recursion
from .merger import merge, promote

__all__ = [
    "TagGenerator",
    "TagsBuffer",
    "TagsRequest",
    "merge",
    "needs_recursion",
    "promote",
]
