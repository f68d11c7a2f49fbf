"""Grounded answer generation for live customer questions.

Low-confidence KB hits are numbered and passed to the LLM as context.  The
model replies with JSON ``{"answer": ..., "contextRefIndex": n | null}``,
where ``contextRefIndex`` is the 1-based number of the context item the
answer relied on.  The answer router uses that index to pick an image.

A reply that is not JSON is kept verbatim as the answer, with no
reference.
"""

from __future__ import annotations

import json
import re

from src.interfaces.llm_provider import ILLMProvider
from src.models.kb import GeneratedAnswer, SearchResult
from src.utils.logging import get_logger

_logger = get_logger(__name__)

ANSWER_MAX_TOKENS = 500
ANSWER_TEMPERATURE = 0.3

SYSTEM_PROMPT = """당신은 고객 지원 AI 어시스턴트입니다.
주어진 지식 베이스 정보를 바탕으로 고객의 질문에 친절하고 정확하게 답변하세요.

규칙:
- 한국어로 답변하세요.
- 지식 베이스 정보가 있으면 그것을 기반으로 답변하세요.
- 정보가 부족하면 솔직하게 "정확한 답변을 드리기 어렵습니다"라고 말하세요.
- 답변은 간결하게 유지하세요 (최대 500자).
- 추측하지 마세요.

응답은 반드시 다음 JSON 형식으로만 하세요:
{"answer": "답변 내용", "contextRefIndex": 참고한 지식 베이스 정보 번호 또는 null}"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def format_context(results: list[SearchResult]) -> str:
    """Render KB hits as the numbered context block appended to the question."""
    if not results:
        return ""
    lines = [f"{i}. Q: {r.question}\n   A: {r.answer}" for i, r in enumerate(results, start=1)]
    return "\n\n참고할 지식 베이스 정보:\n" + "\n".join(lines)


def parse_answer(reply: str) -> GeneratedAnswer:
    """Parse the model's JSON reply, falling back to the raw text."""
    text = reply.strip()
    match = _JSON_OBJECT.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("answer"), str) and data["answer"].strip():
            ref = data.get("contextRefIndex")
            if isinstance(ref, bool) or not isinstance(ref, int):
                ref = None
            return GeneratedAnswer(answer=data["answer"].strip(), context_ref_index=ref)
    return GeneratedAnswer(answer=text, context_ref_index=None)


class AnswerGenerator:
    """Asks the LLM for an answer grounded on numbered KB context."""

    def __init__(self, llm: ILLMProvider) -> None:
        self._llm = llm

    async def generate(self, question: str, context: list[SearchResult]) -> GeneratedAnswer:
        reply = await self._llm.complete(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=f"고객 질문: {question}{format_context(context)}",
            temperature=ANSWER_TEMPERATURE,
            max_tokens=ANSWER_MAX_TOKENS,
        )
        result = parse_answer(reply)
        _logger.debug(
            "answer_generated",
            context_items=len(context),
            context_ref_index=result.context_ref_index,
        )
        return result
