"""Character n-gram overlap between two texts.

Used by the answer router to guess which KB context item a generated
answer drew from.  Whitespace is removed before n-grams are taken, so
spacing differences between the model's wording and the stored answer
(common in Korean text) do not affect the score.
"""

import re

_WHITESPACE = re.compile(r"\s+")


def char_ngrams(text: str, n: int = 3) -> set[str]:
    """Return the set of character *n*-grams of *text* with whitespace stripped.

    Texts shorter than *n* (after stripping) yield a single gram holding
    the whole text, or an empty set for empty input.
    """
    compact = _WHITESPACE.sub("", text)
    if not compact:
        return set()
    if len(compact) < n:
        return {compact}
    return {compact[i : i + n] for i in range(len(compact) - n + 1)}


def ngram_overlap(answer: str, reference: str, n: int = 3) -> float:
    """Fraction of *answer*'s n-grams that also occur in *reference*.

    Returns a value in ``[0.0, 1.0]``; ``0.0`` when either side is empty.
    """
    answer_grams = char_ngrams(answer, n)
    if not answer_grams:
        return 0.0
    reference_grams = char_ngrams(reference, n)
    if not reference_grams:
        return 0.0
    return len(answer_grams & reference_grams) / len(answer_grams)
