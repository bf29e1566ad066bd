"""Sortable hierarchical position keys (path enumeration).

A key is a ``.``-joined sequence of segments, one per tree level. Each
segment is a base-36 fraction written without its leading ``0.``: comparing
two segments as strings compares the fractions they stand for, as long as no
segment ends in ``0``. Since ``.`` sorts below every digit, a node's subtree
sorts directly after the node and before its next sibling, so ordering the
whole novel by key yields a depth-first pre-order walk.
"""

from typing import Optional

from config.exceptions import ConstraintViolationError, KeySpaceExhausted

SEPARATOR = "."
DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(DIGITS)

_DIGIT_VALUE = {d: i for i, d in enumerate(DIGITS)}


def _midpoint(lo: str, hi: Optional[str]) -> str:
    """Return a segment strictly between ``lo`` and ``hi``.

    ``lo`` may be empty (the start of the range) and ``hi`` None (the end).
    Neither may end in ``0``.
    """
    if hi is not None:
        n = 0
        while n < len(hi) and (lo[n] if n < len(lo) else DIGITS[0]) == hi[n]:
            n += 1
        if n > 0:
            return hi[:n] + _midpoint(lo[n:], hi[n:])

    d_lo = _DIGIT_VALUE[lo[0]] if lo else 0
    d_hi = _DIGIT_VALUE[hi[0]] if hi is not None else BASE
    if d_hi - d_lo > 1:
        return DIGITS[(d_lo + d_hi) // 2]
    if hi is not None and len(hi) > 1:
        return hi[:1]
    return DIGITS[d_lo] + _midpoint(lo[1:], None)


def _encode_fraction(value: int, width: int) -> str:
    chars = []
    for _ in range(width):
        value, rem = divmod(value, BASE)
        chars.append(DIGITS[rem])
    return "".join(reversed(chars)).rstrip(DIGITS[0])


class PathCodec:
    """Generate and compare chapter sort keys."""

    def __init__(self, max_segment_length: int = 8):
        self.max_segment_length = max_segment_length

    # ---- Key anatomy ----

    @staticmethod
    def join(parent_key: Optional[str], segment: str) -> str:
        return f"{parent_key}{SEPARATOR}{segment}" if parent_key else segment

    @staticmethod
    def last_segment(key: str) -> str:
        return key.rsplit(SEPARATOR, 1)[-1]

    @staticmethod
    def parent_of(key: str) -> Optional[str]:
        if SEPARATOR not in key:
            return None
        return key.rsplit(SEPARATOR, 1)[0]

    @staticmethod
    def depth(key: str) -> int:
        """Number of ancestors encoded in ``key`` (0 for a root key)."""
        return key.count(SEPARATOR)

    @staticmethod
    def validate(key: str) -> None:
        """Raise ConstraintViolationError unless every segment is well formed."""
        for segment in key.split(SEPARATOR):
            if not segment or segment.endswith(DIGITS[0]) or any(c not in _DIGIT_VALUE for c in segment):
                raise ConstraintViolationError("Malformed sort key", {"sort_path": key})

    # ---- Relationships ----

    @staticmethod
    def is_descendant(candidate: str, ancestor: str) -> bool:
        """True iff ``candidate`` lies strictly inside ``ancestor``'s subtree."""
        return candidate.startswith(ancestor + SEPARATOR)

    @staticmethod
    def is_child(candidate: str, parent: Optional[str]) -> bool:
        """True iff ``candidate`` is a direct child key of ``parent`` (None = root level)."""
        if parent is None:
            return SEPARATOR not in candidate
        return PathCodec.is_descendant(candidate, parent) and SEPARATOR not in candidate[len(parent) + 1:]

    @staticmethod
    def rebase(key: str, old_parent: str, new_parent: str) -> str:
        """Move ``key`` from under ``old_parent`` to under ``new_parent``."""
        if key != old_parent and not PathCodec.is_descendant(key, old_parent):
            raise ConstraintViolationError(
                "Key is not inside the subtree being rebased",
                {"sort_path": key, "old_parent": old_parent},
            )
        return new_parent + key[len(old_parent):]

    # ---- Generation ----

    def next_sibling_key(
        self,
        parent_key: Optional[str],
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> str:
        """Return a key sorting strictly between sibling keys ``after`` and ``before``.

        ``after=None`` means the start of the sibling list and ``before=None``
        its end, so ``next_sibling_key(p, last_child)`` appends. Raises
        KeySpaceExhausted when the new segment would outgrow
        ``max_segment_length``; callers renumber the siblings and retry.
        """
        lo = self.last_segment(after) if after is not None else ""
        hi = self.last_segment(before) if before is not None else None
        for key, name in ((after, "after"), (before, "before")):
            if key is not None and not self.is_child(key, parent_key):
                raise ConstraintViolationError(
                    f"'{name}' key is not a child of the parent key",
                    {"parent_key": parent_key, name: key},
                )
        if hi is not None and lo >= hi:
            raise ConstraintViolationError(
                "Sibling bounds out of order", {"after": after, "before": before}
            )

        segment = _midpoint(lo, hi)
        if len(segment) > self.max_segment_length:
            raise KeySpaceExhausted(after, before)
        return self.join(parent_key, segment)

    def rebalance(self, parent_key: Optional[str], count: int) -> list[str]:
        """Return ``count`` evenly spaced child keys of ``parent_key``.

        The keys are as short as possible while leaving free space before the
        first, between each pair and after the last.
        """
        if count <= 0:
            return []
        width = 1
        while BASE ** width <= 2 * (count + 1):
            width += 1
        span = BASE ** width
        return [
            self.join(parent_key, _encode_fraction((i + 1) * span // (count + 1), width))
            for i in range(count)
        ]
