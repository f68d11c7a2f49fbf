"""LLM-backed Q&A pair generation.

Two modes share one response parser:

- **chunk mode** (:meth:`QAGenerator.generate_from_text`) sends one text
  chunk, optionally with the page it starts on, and asks for FAQ pairs.
- **page-batch mode** (:meth:`QAGenerator.generate_from_pages`) sends every
  rendered page image of a document together with each page's text in a
  single vision call, and asks for pairs tagged with their page number.

The model is asked for a JSON array.  The first ``[...]`` span in the reply
is parsed; anything that does not parse yields an empty list rather than an
exception, so one bad reply costs one unit of work and nothing else.
Provider errors (network, auth, quota) still raise :class:`LLMError`.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from src.interfaces.llm_provider import ILLMProvider
from src.models.kb import QAPair
from src.services.ingestion.document_renderer import RenderedPage
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CATEGORIES: tuple[str, ...] = ("배송", "교환/반품", "사용법", "AS/수리", "결제", "기타")
DEFAULT_CATEGORY = "기타"

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")

_CHUNK_PROMPT = """아래 내용을 분석하여 고객 FAQ Q&A 쌍을 만들어줘.
각 Q&A는 고객이 실제로 물어볼 법한 질문과 친절한 답변으로 구성해.
카테고리는: {categories} 중 하나.
{page_hint}
JSON 배열로 응답해:
[{{"question": "...", "answer": "...", "category": "..."{page_field}}}]

내용:
{text}"""

_PAGE_HINT = (
    "이 내용은 약 {page}페이지부터 시작합니다. "
    "각 Q&A가 몇 페이지의 내용인지 pageNumber 필드도 포함해줘.\n"
)

_PAGES_PROMPT = """첨부한 이미지는 문서의 각 페이지이며 순서대로 1페이지부터 {page_count}페이지입니다.
페이지 이미지와 아래 페이지별 텍스트를 함께 분석하여 고객 FAQ Q&A 쌍을 만들어줘.
각 Q&A는 고객이 실제로 물어볼 법한 질문과 친절한 답변으로 구성해.
카테고리는: {categories} 중 하나.
각 Q&A가 몇 페이지의 내용인지 pageNumber 필드를 반드시 포함해줘.

JSON 배열로 응답해:
[{{"question": "...", "answer": "...", "category": "...", "pageNumber": 1}}]

페이지별 텍스트:
{page_texts}"""


class QAGenerator:
    """Generates :class:`QAPair` lists from text chunks or rendered pages.

    Parameters
    ----------
    llm:
        Provider for chunk mode; also used for page-batch mode when it
        supports vision.
    categories:
        Allowed category labels.  Anything else becomes *default_category*.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        categories: list[str] | tuple[str, ...] = DEFAULT_CATEGORIES,
        default_category: str = DEFAULT_CATEGORY,
        max_tokens: int = 4000,
    ) -> None:
        self._llm = llm
        self._categories = tuple(categories)
        self._default_category = default_category
        self._max_tokens = max_tokens

    @property
    def categories(self) -> tuple[str, ...]:
        return self._categories

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def generate_from_text(self, text: str, start_page: int | None = None) -> list[QAPair]:
        """Chunk mode: one prompt per text chunk."""
        prompt = _CHUNK_PROMPT.format(
            categories=", ".join(self._categories),
            page_hint=_PAGE_HINT.format(page=start_page) if start_page else "",
            page_field=', "pageNumber": 3' if start_page else "",
            text=text,
        )
        reply = await self._llm.complete(
            system_prompt="",
            user_prompt=prompt,
            max_tokens=self._max_tokens,
        )
        return self.parse_response(reply)

    async def generate_from_pages(self, pages: list[RenderedPage]) -> list[QAPair]:
        """Page-batch mode: all page images and texts in one call."""
        if not pages:
            return []
        if not self._llm.supports_vision():
            raise LLMError(
                message="Page-batch generation requires a vision-capable provider",
                provider_name=self._llm.get_provider_name(),
            )

        page_texts = "\n\n".join(
            f"[{page.page_number}페이지]\n{page.text.strip() or '(텍스트 없음)'}" for page in pages
        )
        prompt = _PAGES_PROMPT.format(
            page_count=len(pages),
            categories=", ".join(self._categories),
            page_texts=page_texts,
        )
        reply = await self._llm.complete_with_images(
            prompt=prompt,
            images=[page.image for page in pages],
            max_tokens=self._max_tokens,
        )
        return self.parse_response(reply)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_response(self, reply: str) -> list[QAPair]:
        """Parse a model reply into validated pairs (``[]`` on failure)."""
        match = _JSON_ARRAY.search(reply or "")
        if not match:
            logger.warning("qa_response_no_json_array", reply_length=len(reply or ""))
            return []
        try:
            raw = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            logger.warning("qa_response_json_invalid", error=str(exc))
            return []
        if not isinstance(raw, list):
            return []

        pairs = [pair for item in raw if (pair := self._to_pair(item)) is not None]
        if len(pairs) < len(raw):
            logger.debug("qa_response_items_dropped", dropped=len(raw) - len(pairs))
        return pairs

    def _to_pair(self, item: Any) -> QAPair | None:
        if not isinstance(item, dict):
            return None
        question = item.get("question")
        answer = item.get("answer")
        if not isinstance(question, str) or not isinstance(answer, str):
            return None
        if not question.strip() or not answer.strip():
            return None

        category = item.get("category")
        if category not in self._categories:
            category = self._default_category

        page_number = item.get("pageNumber")
        if isinstance(page_number, bool) or not isinstance(page_number, int) or page_number < 1:
            page_number = None

        return QAPair(
            question=question.strip(),
            answer=answer.strip(),
            category=category,
            page_number=page_number,
        )
