import pytest

from examvariants.models.domain import Exam, ExamQuestion, QuestionType, Variant, VariantConfig
from examvariants.services.answer_key import (
    answer_key,
    canonical_index_of,
    canonical_option_of,
    canonical_question_of,
    correct_local_answer,
    is_correct_local_answer,
    local_position_of,
)
from examvariants.services.variants import VariantGenerator


@pytest.fixture
def exam():
    return Exam(id="e", questions=[
        ExamQuestion(id="colour", type=QuestionType.MULTIPLE_CHOICE, correct_answer="Green",
                     options=["Red", "Green", "Blue"]),
        ExamQuestion(id="earth-round", type=QuestionType.TRUE_FALSE, correct_answer="True"),
    ])


@pytest.fixture
def shuffled(exam):
    # position 1 shows "earth-round" with False/True, position 2 shows "colour" as Blue/Red/Green
    return Variant(id="v", generation_id="g", variant_number=2, variant_code="B",
                   question_order=[1, 0], option_orders=[[2, 0, 1], [1, 0]])


def test_round_trip_for_generated_variants(mixed_exam):
    plan = VariantGenerator().generate(mixed_exam, VariantConfig(number_of_variants=6, seed="round-trip"))
    for v in plan.variants:
        for c, question in enumerate(mixed_exam.questions):
            assert canonical_question_of(mixed_exam, v, local_position_of(v, c)) == question.id
        for position in range(1, 5):
            assert local_position_of(v, canonical_index_of(v, position)) == position


def test_canonical_question_of(exam, shuffled):
    assert canonical_question_of(exam, shuffled, 1) == "earth-round"
    assert canonical_question_of(exam, shuffled, 2) == "colour"


def test_correct_local_answer_follows_option_shuffle(exam, shuffled):
    assert correct_local_answer(exam, shuffled, 2) == "C"
    assert correct_local_answer(exam, shuffled, 1) == "True"


def test_answer_comparison_is_normalized(exam, shuffled):
    assert is_correct_local_answer(exam, shuffled, 2, " c ")
    assert not is_correct_local_answer(exam, shuffled, 2, "A")
    assert not is_correct_local_answer(exam, shuffled, 2, "")
    assert is_correct_local_answer(exam, shuffled, 1, "TRUE")
    assert not is_correct_local_answer(exam, shuffled, 1, "false")


def test_true_false_accepts_local_label(exam, shuffled):
    # options on this variant are shown as A=False, B=True
    assert is_correct_local_answer(exam, shuffled, 1, "B")
    assert not is_correct_local_answer(exam, shuffled, 1, "A")


def test_canonical_option_of(exam, shuffled):
    assert canonical_option_of(exam, shuffled, 2, "A") == 2
    assert canonical_option_of(exam, shuffled, 2, "b") == 0
    assert canonical_option_of(exam, shuffled, 2, "") is None
    assert canonical_option_of(exam, shuffled, 2, "Z") is None
    assert canonical_option_of(exam, shuffled, 1, "true") == 0


def test_position_out_of_range(exam, shuffled):
    with pytest.raises(IndexError):
        canonical_index_of(shuffled, 0)
    with pytest.raises(IndexError):
        canonical_index_of(shuffled, 3)


def test_answer_key(exam, shuffled):
    key = answer_key(exam, shuffled)
    assert [(e.position, e.question_id, e.correct_answer, e.canonical_answer) for e in key] == [
        (1, "earth-round", "True", "True"),
        (2, "colour", "C", "Green"),
    ]
