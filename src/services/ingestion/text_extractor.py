"""Text extraction for uploaded files, dispatched on MIME type.

=========================  =============================================
MIME type                  Strategy
=========================  =============================================
``application/pdf``        PyMuPDF text layer, pages joined with ``\\f``
``image/*``                vision-model description of the image
``text/html``              visible text via BeautifulSoup
anything else              UTF-8 decode (undecodable bytes replaced)
=========================  =============================================

The form-feed page separator is what :class:`TextChunker` uses to tag
chunks with their source pages.
"""

from __future__ import annotations

import asyncio
from pathlib import PurePath

import fitz  # PyMuPDF
import structlog
from bs4 import BeautifulSoup

from src.interfaces.llm_provider import ILLMProvider
from src.models.ingest import IngestFile
from src.services.ingestion.chunker import PAGE_BREAK
from src.utils.errors import KBChatbotError, TextExtractionError

logger = structlog.get_logger(logger_name=__name__)

PDF_MIME = "application/pdf"

_MIME_BY_EXTENSION: dict[str, str] = {
    ".pdf": PDF_MIME,
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".txt": "text/plain",
    ".md": "text/plain",
    ".csv": "text/plain",
    ".json": "text/plain",
    ".html": "text/html",
}

IMAGE_DESCRIPTION_PROMPT = (
    "이 제품 이미지/설명서를 분석해서 고객 FAQ에 쓸 수 있는 정보를 상세히 추출해줘. "
    "제품 특징, 사용법, 주의사항 등을 포함해."
)

# Tags whose contents never reach the reader.
_INVISIBLE_TAGS = ("script", "style", "noscript", "template", "head")


def guess_mime_type(file_name: str) -> str:
    """Map a file name's extension to a MIME type (``text/plain`` if unknown)."""
    return _MIME_BY_EXTENSION.get(PurePath(file_name).suffix.lower(), "text/plain")


def is_page_document(mime_type: str) -> bool:
    return mime_type == PDF_MIME


def is_image(mime_type: str) -> bool:
    return mime_type.startswith("image/")


class TextExtractor:
    """Turns an :class:`IngestFile` into plain text.

    Parameters
    ----------
    vision_llm:
        Provider used to describe image uploads.  When ``None`` (or the
        provider has no vision support) image uploads fail extraction.
    """

    def __init__(self, vision_llm: ILLMProvider | None = None) -> None:
        self._vision_llm = vision_llm

    async def extract(self, file: IngestFile) -> str:
        """Return the text content of *file*.

        Raises
        ------
        TextExtractionError
            If the file cannot be read, or a non-PDF file yields no text.
        """
        try:
            if is_page_document(file.mime_type):
                text = await asyncio.to_thread(self.extract_pdf_text, file.data)
            elif is_image(file.mime_type):
                text = await self.describe_image(file.data)
            elif file.mime_type == "text/html":
                text = self.extract_html_text(file.data)
            else:
                text = file.data.decode("utf-8", errors="replace")
        except TextExtractionError:
            raise
        except KBChatbotError as exc:
            raise TextExtractionError(
                message=f"{file.name}: {exc.message}",
                provider_name=exc.provider_name,
            ) from exc
        except Exception as exc:
            raise TextExtractionError(message=f"{file.name}: {exc}") from exc

        # Scanned PDFs have no text layer; their pages are read from the images.
        if not text.strip() and not is_page_document(file.mime_type):
            raise TextExtractionError(message=f"{file.name}: no text content")

        logger.debug(
            "text_extracted",
            file_name=file.name,
            mime_type=file.mime_type,
            length=len(text),
        )
        return text

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    @staticmethod
    def extract_pdf_text(data: bytes) -> str:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return PAGE_BREAK.join(page.get_text() for page in doc)

    @staticmethod
    def extract_html_text(data: bytes) -> str:
        soup = BeautifulSoup(data.decode("utf-8", errors="replace"), "html.parser")
        for tag in soup(_INVISIBLE_TAGS):
            tag.decompose()
        lines = (line.strip() for line in soup.get_text("\n").splitlines())
        return "\n".join(line for line in lines if line)

    async def describe_image(self, data: bytes) -> str:
        if self._vision_llm is None or not self._vision_llm.supports_vision():
            raise TextExtractionError(message="No vision-capable LLM configured for image uploads")
        return await self._vision_llm.complete_with_images(
            prompt=IMAGE_DESCRIPTION_PROMPT,
            images=[data],
        )
