"""Answer routing for live customer questions.

# ─── DECISION TIERS (Junior Developer Guide) ───────────────────────────
#
#   question ──► embed ──► search published KB (threshold 0.3, top 3)
#                              │
#                              ├─ nothing? retry with threshold 0 so the
#                              │  generator still gets best-effort context
#                              ▼
#   top.similarity ≥ 0.8 ? ──yes──► kb_match      (verbatim, no LLM call)
#                              │
#                              no
#                              ▼
#                         AnswerGenerator ──► ai_generated
#
#   Any exception, or the whole thing taking longer than the deadline
#   (4.5 s, under the chat platform's 5 s limit) ──► fallback
#
# The deadline is enforced with ``asyncio.timeout`` so in-flight provider
# calls are cancelled rather than left running.  ``answer()`` never
# raises.
#
# IMAGE ATTRIBUTION for ai_generated answers:
#   1. If the model says which context item it used (1-based
#      ``contextRefIndex``) and that item has an image, use it.
#   2. Otherwise score every context item that has an image by character
#      trigram overlap with the generated answer and take the best one,
#      but only if it beats the overlap floor (0.2).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.kb_store import IKBStore
from src.models.kb import AnswerPipelineResult, GeneratedAnswer, ResponseSource, SearchResult
from src.services.answer_generator import AnswerGenerator
from src.utils.logging import get_logger
from src.utils.text_similarity import ngram_overlap

_logger = get_logger(__name__)

FALLBACK_MESSAGE = "죄송합니다, 현재 답변을 생성하지 못했습니다. 상담사에게 문의해주세요."


class AnswerRouter:
    """Routes a question to a KB answer, a generated answer or the fallback.

    Parameters
    ----------
    embedding_provider:
        Embeds the incoming question.
    kb_store:
        Searched for published entries only.
    generator:
        Produces grounded answers when no KB entry matches directly.
    match_threshold:
        Similarity at or above which the top hit is returned verbatim.
    search_threshold, max_results:
        First search pass.
    retry_max_results:
        Result cap for the zero-threshold retry.
    image_overlap_floor:
        Minimum trigram overlap for the fallback image heuristic.
    timeout_ms:
        Deadline for the whole pipeline.
    fallback_message:
        Text returned when anything fails.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        kb_store: IKBStore,
        generator: AnswerGenerator,
        match_threshold: float = 0.8,
        search_threshold: float = 0.3,
        max_results: int = 3,
        retry_max_results: int = 3,
        image_overlap_floor: float = 0.2,
        timeout_ms: int = 4500,
        fallback_message: str = FALLBACK_MESSAGE,
    ) -> None:
        self._embedder = embedding_provider
        self._kb_store = kb_store
        self._generator = generator
        self._match_threshold = match_threshold
        self._search_threshold = search_threshold
        self._max_results = max_results
        self._retry_max_results = retry_max_results
        self._image_overlap_floor = image_overlap_floor
        self._timeout_s = timeout_ms / 1000
        self._fallback_message = fallback_message

    async def answer(self, question: str) -> AnswerPipelineResult:
        """Answer *question*; returns the fallback result instead of raising."""
        try:
            async with asyncio.timeout(self._timeout_s):
                return await self._route(question)
        except TimeoutError:
            _logger.warning("answer_timeout", timeout_s=self._timeout_s)
        except Exception as exc:
            _logger.warning("answer_failed", error=str(exc), error_type=type(exc).__name__)
        return self.fallback()

    def fallback(self) -> AnswerPipelineResult:
        return AnswerPipelineResult(
            answer=self._fallback_message,
            source=ResponseSource.FALLBACK,
            matched_kb_id=None,
            similarity_score=None,
            image_url=None,
            kb_results=[],
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _route(self, question: str) -> AnswerPipelineResult:
        embedding = await self._embedder.embed_single(question)

        results = await self._kb_store.search_published(
            embedding, threshold=self._search_threshold, limit=self._max_results
        )
        if not results:
            results = await self._kb_store.search_published(
                embedding, threshold=0.0, limit=self._retry_max_results
            )

        if results and results[0].similarity >= self._match_threshold:
            top = results[0]
            _logger.info("answer_kb_match", kb_id=top.id, similarity=round(top.similarity, 4))
            return AnswerPipelineResult(
                answer=top.answer,
                source=ResponseSource.KB_MATCH,
                matched_kb_id=top.id,
                similarity_score=top.similarity,
                image_url=top.image_url,
                kb_results=results,
            )

        generated = await self._generator.generate(question, results)
        image_url = self.attribute_image(generated, results)
        _logger.info(
            "answer_ai_generated",
            context_items=len(results),
            context_ref_index=generated.context_ref_index,
            has_image=image_url is not None,
        )
        return AnswerPipelineResult(
            answer=generated.answer,
            source=ResponseSource.AI_GENERATED,
            matched_kb_id=None,
            similarity_score=results[0].similarity if results else None,
            image_url=image_url,
            kb_results=results,
        )

    def attribute_image(self, generated: GeneratedAnswer, context: list[SearchResult]) -> str | None:
        """Pick the image of the context item the answer was drawn from."""
        ref = generated.context_ref_index
        if ref is not None and 1 <= ref <= len(context) and context[ref - 1].image_url:
            return context[ref - 1].image_url

        best_url: str | None = None
        best_score = 0.0
        for item in context:
            if not item.image_url:
                continue
            score = ngram_overlap(generated.answer, item.answer)
            if score > best_score:
                best_score = score
                best_url = item.image_url

        if best_url is not None and best_score > self._image_overlap_floor:
            return best_url
        return None
