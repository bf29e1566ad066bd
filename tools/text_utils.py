"""Text utilities: word counting for mixed Chinese / Latin prose."""

import re

_CJK = r"\u4e00-\u9fff\u3400-\u4dbf"

# One CJK ideograph, or one run of other word characters (inner apostrophes allowed)
_WORD_RE = re.compile(
    rf"[{_CJK}]|[^\W{_CJK}]+(?:['’][^\W{_CJK}]+)*"
)


def count_words(text: str) -> int:
    """Count words on word boundaries.

    Each Chinese character is a word of its own; Latin words, numbers and
    mixed alphanumeric tokens count once each. Punctuation and whitespace are
    ignored, so ``"Hello world"`` is 2 and ``"你好, world"`` is 3.
    """
    if not text:
        return 0
    return len(_WORD_RE.findall(text))
