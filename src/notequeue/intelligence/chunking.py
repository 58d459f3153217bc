"""Heading-aware markdown chunker.

The body is first split into sections at ATX headings (``#`` to ``######``).
Each section keeps the stack of enclosing headings as its heading path.
Sections longer than ``chunk_size`` words are split into windows of
``chunk_size`` words overlapping by ``overlap`` words. Chunk indexes run
across the whole article, starting at 0.
"""

from __future__ import annotations

import re

from notequeue.collaborators import Chunk

_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50


class MarkdownChunker:
    """Chunker implementation for markdown article bodies.

    Attributes:
        chunk_size: Maximum words per chunk.
        overlap: Words shared by consecutive chunks of one section.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, body: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        for heading_path, text in self._split_sections(body):
            for window in self._split_words(text):
                chunks.append(
                    Chunk(chunk_index=len(chunks), heading_path=heading_path, text=window)
                )
        return chunks

    def _split_sections(self, body: str) -> list[tuple[list[str], str]]:
        sections: list[tuple[list[str], str]] = []
        stack: list[tuple[int, str]] = []
        path: list[str] = []
        lines: list[str] = []

        for line in body.split("\n"):
            match = _HEADING.match(line)
            if match is None:
                lines.append(line)
                continue

            if lines:
                sections.append((path, "\n".join(lines).strip()))
                lines = []

            level = len(match.group(1))
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, line.strip()))
            path = [heading for _, heading in stack]

        if lines:
            sections.append((path, "\n".join(lines).strip()))

        sections = [(p, text) for p, text in sections if text]
        if not sections and body.strip():
            # headings only
            sections.append(([], body.strip()))
        return sections

    def _split_words(self, text: str) -> list[str]:
        words = _WHITESPACE.split(text.strip())
        if len(words) <= self.chunk_size:
            return [text]

        windows: list[str] = []
        start = 0
        while start < len(words):
            end = min(start + self.chunk_size, len(words))
            windows.append(" ".join(words[start:end]))
            if end >= len(words):
                break
            start = end - self.overlap
        return windows
