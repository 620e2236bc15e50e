import pytest

from examvariants.models.domain import Exam, ExamQuestion, QuestionType, Variant
from examvariants.services.analysis import QuestionResponse, StudentResponse
from examvariants.services.integrity import (
    FlaggingConfig,
    copying_probability,
    cross_grade,
    flag_submissions,
    flagging_summary,
    student_similarity,
    variant_similarity,
)


def variant(number, question_order, option_orders):
    return Variant(id=f"v{number}", generation_id="g", variant_number=number,
                   variant_code="ABC"[number - 1], question_order=question_order, option_orders=option_orders)


def answers(sid, picks):
    return StudentResponse(student_id=sid, total_score=0, percentage=0, responses=[
        QuestionResponse(question_id=q, is_correct=False, answer="" if p is None else "x", selected_option=p)
        for q, p in picks.items()
    ])


def test_variant_similarity():
    a = variant(1, [0, 1, 2, 3], [[0, 1], [0, 1], [0, 1], [0, 1]])
    b = variant(2, [0, 1, 2, 3], [[0, 1], [0, 1], [0, 1], [0, 1]])
    c = variant(3, [3, 2, 1, 0], [[1, 0], [1, 0], [1, 0], [1, 0]])
    m = variant_similarity([c, a, b])
    assert m.labels == ["A", "B", "C"]
    assert m.get("A", "B") == 1.0
    assert m.get("A", "C") == 0.0
    assert m.get("C", "C") == 1.0
    assert m.pairs_above(0.9) == [{"first": "A", "second": "B", "similarity": 1.0}]


def test_student_similarity():
    m = student_similarity([
        answers("s1", {"q1": 0, "q2": 1, "q3": 2}),
        answers("s2", {"q1": 0, "q2": 1, "q3": 3}),
        answers("s3", {"q1": None, "q2": None, "q3": None}),
    ])
    assert m.get("s1", "s2") == pytest.approx(2 / 3)
    assert m.get("s1", "s3") is None
    assert m.to_dict()["matrix"][2][2] is None


# Two 3-option questions; variant B shows the options rotated so that
# A's key (A, B) is wrong on B and B's key (B, A) is wrong on A.
EXAM = Exam(id="quiz", questions=[
    ExamQuestion(id="q1", type=QuestionType.MULTIPLE_CHOICE, correct_answer="x", options=["x", "y", "z"]),
    ExamQuestion(id="q2", type=QuestionType.MULTIPLE_CHOICE, correct_answer="y", options=["x", "y", "z"]),
])
LAYOUT_A = Variant(id="va", generation_id="g", variant_number=1, variant_code="A",
                   question_order=[0, 1], option_orders=[[0, 1, 2], [0, 1, 2]])
LAYOUT_B = Variant(id="vb", generation_id="g", variant_number=2, variant_code="B",
                   question_order=[0, 1], option_orders=[[2, 0, 1], [1, 2, 0]])


def sheet(sid, code, picks, correct):
    total = float(sum(correct))
    return StudentResponse(student_id=sid, total_score=total, percentage=total / 2 * 100, variant_code=code,
                           responses=[QuestionResponse(q, ok, raw, selected, float(ok))
                                      for q, (raw, selected), ok in zip(("q1", "q2"), picks, correct)])


@pytest.fixture
def cohort():
    return [
        sheet("s1", "A", [("A", 0), ("B", 1)], (True, True)),
        # copied s1's letters onto variant B
        sheet("s2", "B", [("A", 2), ("B", 2)], (False, False)),
        sheet("s3", "A", [("A", 0), ("B", 1)], (True, True)),
    ]


def test_copying_probability():
    assert copying_probability(1.0, 1.0, 100, 100, 50, 0.5, 0.5) == pytest.approx(0.5 ** 0.5)
    assert copying_probability(1.0, 1.0, 100, 100, 50, 1.0, 1.0) == 0.999
    assert copying_probability(0.0, 0.0, 100, 100, 50, 1.0, 1.0) == 0.0
    assert copying_probability(1.0, 1.0, 100, 100, 50, None, 0.9) == 0.0
    # the best cross grade adds to the score term
    assert copying_probability(1.0, 1.0, 50, 50, 100, 0.5, 0.5, cross1=100.0, cross2=0.0) == \
        pytest.approx((0.5 * 2.0 * 0.25) ** 0.5)


def test_cross_grade(cohort):
    s1, s2, _ = cohort
    assert cross_grade(EXAM, LAYOUT_A, LAYOUT_B, s1) == 0.0
    assert cross_grade(EXAM, LAYOUT_B, LAYOUT_A, s2) == 100.0


def test_flagging_levels():
    config = FlaggingConfig(high_threshold=0.8, medium_threshold=0.7, low_threshold=0.5)
    assert config.level(0.85) == "high"
    assert config.level(0.8) == "high"
    assert config.level(0.75) == "medium"
    assert config.level(0.5) == "low"
    assert config.level(0.49) is None


def test_flag_submissions_reports_every_pair_above_threshold(cohort):
    config = FlaggingConfig(high_threshold=0.8, medium_threshold=0.7, low_threshold=0.0)
    flagged = flag_submissions(EXAM, [LAYOUT_A, LAYOUT_B], cohort, config)
    assert [(f.student1, f.student2) for f in flagged] == [("s1", "s2"), ("s1", "s3"), ("s2", "s3")]

    across = flagged[0].to_dict()
    assert across["variantSimilarity"] == pytest.approx(0.5)
    assert across["responseSimilarity"] == 0.0
    assert across["student1CrossGrade"] == 0.0
    assert across["student2CrossGrade"] == 100.0
    assert across["student1GradeChange"] == -100.0
    assert across["student2GradeChange"] == 100.0
    assert across["classAverageScore"] == pytest.approx(200 / 3)

    same = flagged[1]
    assert same.variant_similarity == 1.0 and same.response_similarity == 1.0
    assert same.student1_cross_grade is None and same.student1_grade_change == 0.0
    # both A students scored 100%, so variant A's point-biserial is undefined
    assert same.student1_biserial is None
    assert same.probability == 0.0

    summary = flagging_summary(flagged)
    assert summary["totalFlagged"] == 3
    assert summary["uniqueStudentsInvolved"] == 3


def test_flag_submissions_default_threshold_and_unknown_variants(cohort):
    assert flag_submissions(EXAM, [LAYOUT_A, LAYOUT_B], cohort) == []
    config = FlaggingConfig(low_threshold=0.0)
    flagged = flag_submissions(EXAM, [LAYOUT_A], cohort, config)
    assert [(f.student1, f.student2) for f in flagged] == [("s1", "s3")]
    assert flagging_summary([]) == {"totalFlagged": 0, "uniqueStudentsInvolved": 0,
                                    "averageProbability": 0.0, "averageSimilarity": 0.0}
