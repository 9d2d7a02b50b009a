"""Plain-text helpers for markdown bodies: excerpts and reading time.

These work line by line and do not parse markdown. Fenced code blocks and
ATX headings are skipped; inline markup characters are stripped.
"""

import math
import re
from typing import Iterator

WORDS_PER_MINUTE = 200
CJK_CHARS_PER_MINUTE = 300
SECONDS_PER_CODE_BLOCK = 30

_FENCE = re.compile(r"^\s*(```|~~~)")
_HEADING = re.compile(r"^\s{0,3}#{1,6}(\s|$)")
_LINK = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_LIST_MARKER = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+")
_INLINE_MARKUP = re.compile(r"[*_`>]+")
_CJK = re.compile(r"[一-鿿㐀-䶿぀-ヿ가-힯]")


def _prose_lines(markdown: str) -> Iterator[str]:
    """Yield lines outside code fences, headings excluded; '' marks a paragraph break."""
    in_fence = False
    for line in markdown.splitlines():
        if _FENCE.match(line):
            in_fence = not in_fence
            continue
        if in_fence or _HEADING.match(line):
            continue
        yield line


def _plain(line: str) -> str:
    line = _LINK.sub(r"\1", line)
    line = _LIST_MARKER.sub("", line)
    return _INLINE_MARKUP.sub("", line)


def generate_excerpt(markdown: str, word_limit: int = 50) -> str:
    """
    Plain-text excerpt of at most word_limit words.

    Stops after the first paragraph once it holds at least half the limit.
    The result always ends with '.', '!', '?' or '...'.
    """
    words = []
    truncated = False
    for line in _prose_lines(markdown):
        if not line.strip():
            if words and len(words) >= word_limit // 2:
                break
            continue
        for word in _plain(line).split():
            if len(words) >= word_limit:
                truncated = True
                break
            words.append(word)
        if truncated:
            break

    excerpt = " ".join(words).strip()
    if truncated:
        excerpt += "..."
    if excerpt and not excerpt.endswith((".", "!", "?", "...")):
        excerpt += "..."
    return excerpt


def count_code_blocks(markdown: str) -> int:
    fences = sum(1 for line in markdown.splitlines() if _FENCE.match(line))
    return fences // 2


def calculate_reading_time(markdown: str) -> int:
    """Estimated minutes to read, rounded up, never less than 1."""
    prose = "\n".join(_plain(line) for line in _prose_lines(markdown))
    cjk_chars = len(_CJK.findall(prose))
    word_count = len(_CJK.sub(" ", prose).split())

    minutes = (
        word_count / WORDS_PER_MINUTE
        + cjk_chars / CJK_CHARS_PER_MINUTE
        + count_code_blocks(markdown) * SECONDS_PER_CODE_BLOCK / 60
    )
    return max(1, math.ceil(minutes))
