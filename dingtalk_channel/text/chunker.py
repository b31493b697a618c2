"""Markdown-aware splitting of outbound text into provider-sized chunks.

Chunks are plain slices of the input: joining them gives back the original
text. A fenced code block is never cut in two. The one case where a chunk may
exceed the limit is a single fenced block that is longer than the limit on its
own; it is emitted whole instead of being broken.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

_OPEN_FENCE_RE = re.compile(r"^ {0,3}(`{3,})")
_CLOSE_FENCE_RE = re.compile(r"^ {0,3}(`{3,})[ \t]*$")

# Preferred split points, best first. The cut goes right after the separator.
_SEPARATORS = ("\n\n", "\n", " ")


@dataclass(frozen=True)
class FenceSpan:
    start: int  # offset of the opening fence line
    end: int  # offset just past the closing fence line

    def __len__(self) -> int:
        return self.end - self.start

    def contains(self, pos: int) -> bool:
        """True when cutting at ``pos`` would sever this block."""
        return self.start < pos < self.end


def find_fences(text: str) -> list[FenceSpan]:
    """Locate closed fenced code blocks. Unterminated fences are ignored."""
    spans: list[FenceSpan] = []
    offset = 0
    open_at: int | None = None
    marker = 0
    for line in text.splitlines(keepends=True):
        if open_at is None:
            m = _OPEN_FENCE_RE.match(line)
            if m:
                open_at = offset
                marker = len(m.group(1))
        else:
            m = _CLOSE_FENCE_RE.match(line.rstrip("\r\n"))
            if m and len(m.group(1)) >= marker:
                spans.append(FenceSpan(open_at, offset + len(line)))
                open_at = None
        offset += len(line)
    return spans


def chunk_markdown(text: str, limit: int) -> list[str]:
    if limit <= 0:
        raise ValueError(f"chunk limit must be positive, got {limit}")
    if not text:
        return []
    if len(text) <= limit:
        return [text]

    fences = find_fences(text)
    chunks: list[str] = []
    start = 0
    while start < len(text):
        if len(text) - start <= limit:
            chunks.append(text[start:])
            break
        block = next((f for f in fences if f.start == start), None)
        if block is not None and len(block) > limit:
            chunks.append(text[start:block.end])
            start = block.end
            continue
        cut = _split_point(text, start, start + limit, fences)
        chunks.append(text[start:cut])
        start = cut
    return chunks


def _split_point(text: str, start: int, window_end: int, fences: list[FenceSpan]) -> int:
    def severs(pos: int) -> bool:
        return any(f.contains(pos) for f in fences)

    for sep in _SEPARATORS:
        search_end = window_end
        while search_end > start:
            idx = text.rfind(sep, start, search_end)
            if idx < 0:
                break
            cut = idx + len(sep)
            if cut > start and not severs(cut):
                return cut
            search_end = cut - 1

    # no usable boundary: hard cut, pulled back to the fence opening if needed
    cut = window_end
    for f in fences:
        if f.contains(cut) and f.start > start:
            return f.start
    return cut
