"""Fixed-window text chunking with overlap and page tracking.

Splits extracted document text into :class:`TextChunk` windows sized for a
single Q&A generation prompt.  Windows are ``max_length`` characters long
and advance by ``max_length - overlap``, so consecutive windows share
exactly ``overlap`` characters and together cover the whole text.

PDF text arrives with a form feed (``\\f``) between pages.  Each chunk
records the 1-based page its window starts and ends on, which the Q&A
generator passes to the model as a page hint.

After windowing, each chunk's text is stripped and chunks no longer than
``min_length`` characters are dropped as noise (page footers, stray
headings).  Surviving chunks keep their original window index.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(logger_name=__name__)

PAGE_BREAK = "\f"


@dataclass(frozen=True)
class TextChunk:
    """One window of source text."""

    text: str
    index: int
    start: int
    end: int
    start_page: int | None = None
    end_page: int | None = None


class TextChunker:
    """Splits text into overlapping fixed-size windows.

    Parameters
    ----------
    max_length:
        Window size in characters (default 1000).
    overlap:
        Characters shared by consecutive windows (default 200).  Must be
        smaller than *max_length*.
    min_length:
        Stripped chunks of this length or shorter are dropped (default 50).
    """

    def __init__(self, max_length: int = 1000, overlap: int = 200, min_length: int = 50) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        if not 0 <= overlap < max_length:
            raise ValueError("overlap must be in [0, max_length)")
        self._max_length = max_length
        self._overlap = overlap
        self._min_length = min_length

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def windows(self, text: str) -> list[TextChunk]:
        """Return every raw window, before stripping and noise filtering.

        The last window is the first one that reaches the end of *text*.
        """
        page_starts = self._page_starts(text)
        step = self._max_length - self._overlap

        chunks: list[TextChunk] = []
        start = 0
        index = 0
        while start < len(text):
            end = min(start + self._max_length, len(text))
            start_page, end_page = self._page_range(page_starts, start, end)
            chunks.append(
                TextChunk(
                    text=text[start:end],
                    index=index,
                    start=start,
                    end=end,
                    start_page=start_page,
                    end_page=end_page,
                )
            )
            if end == len(text):
                break
            start += step
            index += 1
        return chunks

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into stripped, noise-filtered chunks."""
        if not text:
            return []

        raw = self.windows(text)
        chunks = [
            TextChunk(
                text=stripped,
                index=c.index,
                start=c.start,
                end=c.end,
                start_page=c.start_page,
                end_page=c.end_page,
            )
            for c in raw
            if len(stripped := c.text.strip()) > self._min_length
        ]

        logger.debug(
            "chunking_complete",
            text_length=len(text),
            windows=len(raw),
            kept=len(chunks),
        )
        return chunks

    # ------------------------------------------------------------------
    # Page mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _page_starts(text: str) -> list[int]:
        """Offsets where each page begins; page 1 starts at 0."""
        starts = [0]
        pos = text.find(PAGE_BREAK)
        while pos != -1:
            starts.append(pos + 1)
            pos = text.find(PAGE_BREAK, pos + 1)
        return starts

    @staticmethod
    def _page_range(page_starts: list[int], start: int, end: int) -> tuple[int | None, int | None]:
        # Single-page text carries no page information.
        if len(page_starts) <= 1:
            return None, None
        start_page = bisect.bisect_right(page_starts, start)
        end_page = bisect.bisect_right(page_starts, end - 1)
        return start_page, end_page
