"""Page-oriented document rendering (PDF → per-page PNG + text).

Uses PyMuPDF (``fitz``) to rasterize each page at a zoom factor that
scales the page to :data:`TARGET_WIDTH` pixels wide, and extracts the
page's text layer alongside.  Page numbers are 1-based and contiguous.

If PyMuPDF cannot rasterize a page (missing fonts, broken content
streams, a build without the raster backend) the page is drawn instead
as a plain white Pillow image with its text laid out line by line.  The
fallback keeps the same numbering and width so callers never need to
know which renderer produced a page.

A document PyMuPDF cannot open at all raises :class:`DocumentRenderError`;
the ingestion pipeline turns that into a ``page_rendering`` error event
for the file.
"""

from __future__ import annotations

import asyncio
import io
import textwrap
from dataclasses import dataclass

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from PIL import Image, ImageDraw, ImageFont

from src.utils.errors import DocumentRenderError

logger = structlog.get_logger(logger_name=__name__)

TARGET_WIDTH = 1200
MAX_PAGES = 100

# Fallback raster layout.
_FALLBACK_MARGIN = 40
_FALLBACK_LINE_HEIGHT = 18
_FALLBACK_WRAP = 140
_FALLBACK_MIN_HEIGHT = 1600


@dataclass(frozen=True)
class RenderedPage:
    """One rendered page: 1-based number, PNG bytes and its text layer."""

    page_number: int
    image: bytes
    text: str


class DocumentRenderer:
    """Renders PDF bytes into :class:`RenderedPage` objects.

    Parameters
    ----------
    target_width:
        Output image width in pixels.
    max_pages:
        Pages beyond this count are ignored.
    """

    def __init__(self, target_width: int = TARGET_WIDTH, max_pages: int = MAX_PAGES) -> None:
        self._target_width = target_width
        self._max_pages = max_pages

    async def render(self, data: bytes, file_name: str = "") -> list[RenderedPage]:
        """Render *data* off the event loop."""
        return await asyncio.to_thread(self.render_sync, data, file_name)

    def render_sync(self, data: bytes, file_name: str = "") -> list[RenderedPage]:
        """Blocking implementation of :meth:`render`.

        Raises
        ------
        DocumentRenderError
            If the document cannot be opened or has no pages.
        """
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise DocumentRenderError(
                message=f"Cannot open document {file_name or '<bytes>'}: {exc}",
                provider_name="pymupdf",
            ) from exc

        try:
            if doc.page_count == 0:
                raise DocumentRenderError(
                    message=f"Document {file_name or '<bytes>'} has no pages",
                    provider_name="pymupdf",
                )

            page_total = min(doc.page_count, self._max_pages)
            if doc.page_count > self._max_pages:
                logger.warning(
                    "render_page_cap_applied",
                    file_name=file_name,
                    page_count=doc.page_count,
                    max_pages=self._max_pages,
                )

            pages: list[RenderedPage] = []
            fallback_count = 0
            for index in range(page_total):
                page = doc[index]
                text = page.get_text()
                try:
                    image = self._rasterize(page)
                except Exception as exc:
                    logger.warning(
                        "page_raster_failed_using_fallback",
                        file_name=file_name,
                        page_number=index + 1,
                        error=str(exc),
                    )
                    image = self.render_text_fallback(text)
                    fallback_count += 1
                pages.append(RenderedPage(page_number=index + 1, image=image, text=text))
        finally:
            doc.close()

        logger.info(
            "document_rendered",
            file_name=file_name,
            pages=len(pages),
            fallback_pages=fallback_count,
        )
        return pages

    # ------------------------------------------------------------------
    # Renderers
    # ------------------------------------------------------------------

    def _rasterize(self, page: fitz.Page) -> bytes:
        zoom = self._target_width / page.rect.width
        pixmap = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return pixmap.tobytes("png")

    def render_text_fallback(self, text: str) -> bytes:
        """Draw *text* onto a white page-shaped PNG."""
        lines: list[str] = []
        for paragraph in text.splitlines():
            lines.extend(textwrap.wrap(paragraph, _FALLBACK_WRAP) or [""])

        height = max(
            _FALLBACK_MIN_HEIGHT,
            2 * _FALLBACK_MARGIN + len(lines) * _FALLBACK_LINE_HEIGHT,
        )
        image = Image.new("RGB", (self._target_width, height), "white")
        draw = ImageDraw.Draw(image)
        font = ImageFont.load_default()

        y = _FALLBACK_MARGIN
        for line in lines:
            try:
                draw.text((_FALLBACK_MARGIN, y), line, fill="black", font=font)
            except UnicodeEncodeError:
                # The bitmap default font only covers Latin-1.
                safe = line.encode("latin-1", "replace").decode("latin-1")
                draw.text((_FALLBACK_MARGIN, y), safe, fill="black", font=font)
            y += _FALLBACK_LINE_HEIGHT

        buf = io.BytesIO()
        image.save(buf, format="PNG")
        return buf.getvalue()
