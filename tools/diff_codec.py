"""Line-level text deltas for the revision chain.

A delta is a list of operations replayed against the base text's lines:

* ``["=", n]`` copy the next ``n`` base lines,
* ``["-", n]`` skip the next ``n`` base lines,
* ``["+", [line, ...]]`` insert the given lines.

Lines keep their endings (``str.splitlines(keepends=True)``) so the round trip
is exact down to the last newline.
"""

import difflib
import json
import logging
from dataclasses import dataclass

from config.exceptions import DeltaError

logger = logging.getLogger(__name__)

DELTA_FORMAT_VERSION = 1

# Largest old x new character product refined per changed block
MAX_REFINE_CELLS = 1_000_000
# Total character pairs compared when searching for similar lines
MAX_SIMILARITY_CELLS = 5_000_000
SIMILARITY_THRESHOLD = 0.7


@dataclass(frozen=True)
class Delta:
    """Encoded difference between two texts."""
    base_lines: int
    ops: tuple = ()

    def encode(self) -> str:
        return json.dumps(
            {"v": DELTA_FORMAT_VERSION, "base": self.base_lines, "ops": [list(op) for op in self.ops]},
            ensure_ascii=False,
            separators=(",", ":"),
        )

    @classmethod
    def decode(cls, payload: str) -> "Delta":
        try:
            data = json.loads(payload)
            if data.get("v") != DELTA_FORMAT_VERSION:
                raise DeltaError("Unsupported delta format", {"version": data.get("v")})
            ops = []
            for tag, arg in data["ops"]:
                if tag == "+" and isinstance(arg, list):
                    ops.append(("+", tuple(arg)))
                elif tag in ("=", "-") and isinstance(arg, int):
                    ops.append((tag, arg))
                else:
                    raise DeltaError("Unknown delta operation", {"op": tag})
            return cls(base_lines=int(data["base"]), ops=tuple(ops))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise DeltaError(f"Malformed delta: {e}") from e

    @property
    def is_noop(self) -> bool:
        return all(op[0] == "=" for op in self.ops)

    @property
    def size(self) -> int:
        """Characters of inserted text carried by the delta."""
        return sum(len(line) for tag, arg in self.ops if tag == "+" for line in arg)


@dataclass
class ChangeStats:
    """Character-level change counts between two texts."""
    insertions: int = 0
    deletions: int = 0
    unchanged: int = 0

    @property
    def total_changes(self) -> int:
        return self.insertions + self.deletions


@dataclass(frozen=True)
class SimilarChunk:
    """A removed line paired with a similar inserted line."""
    old_text: str
    new_text: str
    similarity: float
    old_start: int
    new_start: int


def _lines(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def diff(old: str, new: str) -> Delta:
    """Compute the delta turning ``old`` into ``new``."""
    a, b = _lines(old), _lines(new)
    matcher = difflib.SequenceMatcher(None, a, b, autojunk=False)
    ops = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            ops.append(("=", i2 - i1))
            continue
        if i2 > i1:
            ops.append(("-", i2 - i1))
        if j2 > j1:
            ops.append(("+", tuple(b[j1:j2])))
    return Delta(base_lines=len(a), ops=tuple(ops))


def apply(base: str, delta: Delta) -> str:
    """Replay ``delta`` on ``base``; raises DeltaError if they do not fit."""
    lines = _lines(base)
    if len(lines) != delta.base_lines:
        raise DeltaError(
            "Delta does not match base text",
            {"expected_lines": delta.base_lines, "actual_lines": len(lines)},
        )
    out = []
    pos = 0
    for tag, arg in delta.ops:
        if tag == "+":
            out.extend(arg)
        elif tag in ("=", "-"):
            if arg < 0 or pos + arg > len(lines):
                raise DeltaError("Delta runs past end of base text", {"position": pos, "count": arg})
            if tag == "=":
                out.extend(lines[pos:pos + arg])
            pos += arg
        else:
            raise DeltaError("Unknown delta operation", {"op": tag})
    if pos != len(lines):
        raise DeltaError("Delta leaves base lines unconsumed", {"position": pos, "total": len(lines)})
    return "".join(out)


def change_statistics(old: str, new: str) -> ChangeStats:
    """Count inserted, deleted and unchanged characters.

    Lines are matched first. A changed block is compared character by
    character only while ``len(old_block) * len(new_block)`` stays within
    ``MAX_REFINE_CELLS``; larger blocks, such as a rewritten chapter, count as
    wholly deleted and inserted. The cost therefore stays close to linear in
    the text length.
    """
    stats = ChangeStats()
    a, b = _lines(old), _lines(new)
    for tag, i1, i2, j1, j2 in difflib.SequenceMatcher(None, a, b, autojunk=False).get_opcodes():
        old_block = "".join(a[i1:i2])
        new_block = "".join(b[j1:j2])
        if tag == "equal":
            stats.unchanged += len(old_block)
            continue
        if len(old_block) * len(new_block) > MAX_REFINE_CELLS:
            stats.deletions += len(old_block)
            stats.insertions += len(new_block)
            continue
        chars = difflib.SequenceMatcher(None, old_block, new_block, autojunk=False)
        for ctag, ci1, ci2, cj1, cj2 in chars.get_opcodes():
            if ctag == "equal":
                stats.unchanged += ci2 - ci1
            else:
                stats.deletions += ci2 - ci1
                stats.insertions += cj2 - cj1
    return stats


def similar_chunks(
    old: str,
    new: str,
    min_length: int = 10,
    threshold: float = SIMILARITY_THRESHOLD,
) -> list[SimilarChunk]:
    """Pair up edited lines that are near matches of each other.

    Only lines inside replaced blocks are candidates, and lines shorter than
    ``min_length`` characters are ignored. Similarity is ``difflib``'s ratio
    and must exceed ``threshold``. At most ``MAX_SIMILARITY_CELLS`` character
    pairs are compared in total; past that budget the search stops and the
    pairs found so far are returned.
    """
    a, b = old.splitlines(), new.splitlines()
    budget = MAX_SIMILARITY_CELLS
    chunks = []
    for tag, i1, i2, j1, j2 in difflib.SequenceMatcher(None, a, b, autojunk=False).get_opcodes():
        if tag != "replace":
            continue
        for i in range(i1, i2):
            if len(a[i]) < min_length:
                continue
            for j in range(j1, j2):
                if len(b[j]) < min_length:
                    continue
                matcher = difflib.SequenceMatcher(None, a[i], b[j], autojunk=False)
                if matcher.real_quick_ratio() <= threshold or matcher.quick_ratio() <= threshold:
                    continue
                budget -= len(a[i]) * len(b[j])
                if budget < 0:
                    logger.debug("Similar line search stopped after %d pairs", len(chunks))
                    return chunks
                ratio = matcher.ratio()
                if ratio > threshold:
                    chunks.append(SimilarChunk(a[i], b[j], ratio, i, j))
    return chunks


def unified_patch(old: str, new: str, context: int = 3) -> str:
    """Human-readable unified diff between two texts."""
    return "".join(
        difflib.unified_diff(_lines(old), _lines(new), fromfile="old", tofile="new", n=context)
    )
