"""
Translation between a variant's local positions and the canonical exam.

Everything here is a pure function of the variant's stored permutations and
the exam's canonical question list, so an answer key can be rebuilt at any
time without the random state used to generate the variant. Local positions
are 1-based, canonical indices 0-based.
"""
from dataclasses import dataclass
from typing import List, Optional

from examvariants.models.domain import (
    Exam,
    ExamQuestion,
    QuestionType,
    Variant,
    label_index,
    normalize_answer,
    option_label,
)


@dataclass
class AnswerKeyEntry:
    position: int
    question_id: str
    canonical_index: int
    correct_answer: str       # as the student sees it on this variant
    canonical_answer: str     # option text in canonical order
    points: float


def canonical_index_of(variant: Variant, position: int) -> int:
    if position < 1 or position > len(variant.question_order):
        raise IndexError(f"Position {position} outside 1..{len(variant.question_order)} "
                         f"for variant {variant.variant_code}")
    return variant.question_order[position - 1]


def local_position_of(variant: Variant, canonical_index: int) -> int:
    """Inverse of :func:`canonical_index_of`."""
    try:
        return variant.question_order.index(canonical_index) + 1
    except ValueError:
        raise IndexError(f"Question index {canonical_index} not in variant {variant.variant_code}") from None


def canonical_question_of(exam: Exam, variant: Variant, position: int) -> str:
    return exam.questions[canonical_index_of(variant, position)].id


def _option_order(variant: Variant, canonical_index: int, question: ExamQuestion) -> List[int]:
    order = variant.option_orders[canonical_index] if canonical_index < len(variant.option_orders) else []
    # an empty stored order means the options were left in canonical order
    return list(order) if order else list(range(len(question.effective_options())))


def local_option_position(variant: Variant, canonical_index: int, question: ExamQuestion,
                          canonical_option: int) -> int:
    """0-based position at which canonical option ``canonical_option`` is shown."""
    return _option_order(variant, canonical_index, question).index(canonical_option)


def correct_local_answer(exam: Exam, variant: Variant, position: int) -> str:
    """
    The correct answer expressed in the variant's own labelling.

    Multiple choice questions answer with the local option label ("A", "B", ...);
    true/false questions answer with the canonical literal ("True"/"False").
    """
    c = canonical_index_of(variant, position)
    question = exam.questions[c]
    correct = question.correct_option_index()
    if correct is None:
        raise ValueError(f"Question {question.id} has no resolvable correct answer")
    if question.type == QuestionType.TRUE_FALSE:
        return question.effective_options()[correct]
    return option_label(local_option_position(variant, c, question, correct))


def canonical_option_of(exam: Exam, variant: Variant, position: int, raw_answer: Optional[str]) -> Optional[int]:
    """Canonical option index selected by ``raw_answer``; None when omitted or unrecognised."""
    answer = normalize_answer(raw_answer)
    if not answer:
        return None
    c = canonical_index_of(variant, position)
    question = exam.questions[c]
    options = question.effective_options()
    order = _option_order(variant, c, question)
    if question.type == QuestionType.TRUE_FALSE:
        for i, opt in enumerate(options):
            if normalize_answer(opt) == answer:
                return i
    local = label_index(answer)
    if local is not None and local < len(order):
        return order[local]
    return None


def is_correct_local_answer(exam: Exam, variant: Variant, position: int, raw_answer: Optional[str]) -> bool:
    answer = normalize_answer(raw_answer)
    if not answer:
        return False
    if answer == normalize_answer(correct_local_answer(exam, variant, position)):
        return True
    question = exam.questions[canonical_index_of(variant, position)]
    if question.type == QuestionType.TRUE_FALSE:
        # a bubble sheet may carry the local label instead of the literal
        return canonical_option_of(exam, variant, position, raw_answer) == question.correct_option_index()
    return False


def answer_key(exam: Exam, variant: Variant) -> List[AnswerKeyEntry]:
    entries = []
    for position in range(1, len(variant.question_order) + 1):
        c = canonical_index_of(variant, position)
        question = exam.questions[c]
        correct = question.correct_option_index()
        entries.append(AnswerKeyEntry(
            position=position,
            question_id=question.id,
            canonical_index=c,
            correct_answer=correct_local_answer(exam, variant, position),
            canonical_answer=question.effective_options()[correct] if correct is not None else "",
            points=question.points,
        ))
    return entries
