"""Tools package: sort key codec, text deltas, and word counting."""

from tools.path_codec import PathCodec
from tools.diff_codec import Delta, ChangeStats, SimilarChunk
from tools.text_utils import count_words

__all__ = [
    "PathCodec",
    "Delta",
    "ChangeStats",
    "SimilarChunk",
    "count_words",
]
