import pytest

from examvariants.core.errors import ValidationError
from examvariants.models.domain import Exam, VariantConfig
from examvariants.services.answer_key import correct_local_answer
from examvariants.services.ingestion import ResultIngestor, UploadContext
from examvariants.services.variants import VariantGenerator


def ingest(exam, variants, text, roster=None):
    return ResultIngestor(UploadContext(exam=exam, variants=variants, roster=roster or set())).ingest(text)


def test_scenario_all_correct(two_question_exam, identity_variant):
    [record] = ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1,Q2\n123,1,A,True\n")
    assert record.student_id == "123"
    assert record.total_score == two_question_exam.total_points == 2
    assert record.percentage == 100
    assert record.variant_code == "A"
    assert all(d.is_correct for d in record.details)


def test_scenario_all_wrong(two_question_exam, identity_variant):
    [record] = ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1,Q2\n123,1,B,False\n")
    assert record.total_score == 0
    assert record.percentage == 0
    assert [d.question_id for d in record.details] == ["q1", "q2"]
    assert not any(d.is_correct for d in record.details)


def test_question_count_mismatch(two_question_exam, identity_variant):
    with pytest.raises(ValidationError) as exc:
        ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1\n123,1,A\n")
    assert exc.value.stage == "shape"
    assert exc.value.code == "question_count_mismatch"
    assert "CSV has 1" in exc.value.message and "exam has 2" in exc.value.message


def test_question_count_checked_before_variants(two_question_exam, identity_variant):
    with pytest.raises(ValidationError, match="Question count mismatch"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1\n123,9,A\n")


def test_missing_variant_column(two_question_exam, identity_variant):
    with pytest.raises(ValidationError, match="No variant column found") as exc:
        ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,Q1,Q2\n123,A,True\n")
    assert exc.value.stage == "header"


def test_missing_student_column(two_question_exam, identity_variant):
    with pytest.raises(ValidationError, match="No student identifier column found"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], "name,variant,Q1,Q2\nAda,1,A,True\n")


def test_header_names_are_case_insensitive(two_question_exam, identity_variant):
    [record] = ingest(two_question_exam, [identity_variant(two_question_exam)], "STUDENT_ID,Variant,q1,q2\n7,1,a,true\n")
    assert record.percentage == 100


def test_no_questions(identity_variant):
    exam = Exam(id="empty", questions=[])
    with pytest.raises(ValidationError, match="No exam questions found"):
        ingest(exam, [identity_variant(exam)], "studentId,variant\n1,1\n")


def test_no_variants(two_question_exam):
    with pytest.raises(ValidationError, match="No exam variants found"):
        ingest(two_question_exam, [], "studentId,variant,Q1,Q2\n123,1,A,True\n")


def test_subset_of_variants_is_rejected(two_question_exam, identity_variant):
    variants = [identity_variant(two_question_exam, n) for n in (1, 2, 3)]
    text = "studentId,variant,Q1,Q2\n1,1,A,True\n2,2,A,True\n"
    with pytest.raises(ValidationError, match="Variant count mismatch") as exc:
        ingest(two_question_exam, variants, text)
    assert exc.value.code == "variant_count_mismatch"


def test_out_of_range_variant_is_rejected(two_question_exam, identity_variant):
    variants = [identity_variant(two_question_exam, n) for n in (1, 2)]
    text = "studentId,variant,Q1,Q2\n1,1,A,True\n2,2,A,True\n3,3,A,True\n"
    with pytest.raises(ValidationError, match="Invalid variant numbers found") as exc:
        ingest(two_question_exam, variants, text)
    assert "Row 3: '3'" in exc.value.message
    assert "Available variants: 1, 2" in exc.value.message


def test_unparsable_variant_is_rejected(two_question_exam, identity_variant):
    with pytest.raises(ValidationError, match="Invalid variant numbers found"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1,Q2\n1,one,A,True\n")


def test_duplicate_students(two_question_exam, identity_variant):
    text = "studentId,variant,Q1,Q2\n1,1,A,True\n1,1,B,True\n"
    with pytest.raises(ValidationError, match="Duplicate student identifiers found: 1"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], text)


def test_roster_rejects_unknown_students(two_question_exam, identity_variant):
    text = "studentId,variant,Q1,Q2\n1,1,A,True\n99,1,A,True\n"
    with pytest.raises(ValidationError, match="Unknown student identifiers found: 99"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], text, roster={"1", "2"})


def test_answer_columns_ordered_by_question_number(two_question_exam, identity_variant):
    [record] = ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q2,Q1\n5,1,True,A\n")
    assert record.percentage == 100


def test_shuffled_variants_scored_against_their_own_key(mixed_exam):
    variants = VariantGenerator().generate(mixed_exam, VariantConfig(number_of_variants=3, randomize_true_false=True,
                                                                     seed="shuffled")).variants
    lines = ["studentId,variant,Q1,Q2,Q3,Q4"]
    for i, v in enumerate(variants, start=1):
        key = [correct_local_answer(mixed_exam, v, p) for p in range(1, 5)]
        lines.append(",".join([f"s{i}", str(v.variant_number)] + key))
    records = ingest(mixed_exam, variants, "\n".join(lines) + "\n")
    assert len(records) == 3
    for record in records:
        assert all(d.is_correct for d in record.details)
        assert record.total_score == mixed_exam.total_points
        assert sorted(d.question_id for d in record.details) == ["m1", "m2", "m3", "m4"]


def test_negative_points_for_wrong_answers_only(mixed_exam, identity_variant):
    text = "studentId,variant,Q1,Q2,Q3,Q4\n1,1,B,C,False,A\n2,1,B,C,False,\n"
    first, second = ingest(mixed_exam, [identity_variant(mixed_exam)], text)
    assert first.total_score == pytest.approx(4.0 - 0.5)
    assert second.total_score == pytest.approx(4.0)
    assert sum(d.points for d in first.details) == first.total_score
    assert first.percentage == pytest.approx(3.5 / 5.0 * 100)


def test_check_reports_failure_without_raising(two_question_exam, identity_variant):
    ingestor = ResultIngestor(UploadContext(exam=two_question_exam, variants=[identity_variant(two_question_exam)]))
    outcome = ingestor.check("studentId,variant,Q1\n123,1,A\n")
    assert not outcome.ok
    assert outcome.stage == "shape"
    assert outcome.to_dict()["code"] == "question_count_mismatch"

    outcome = ingestor.check("studentId,variant,Q1,Q2\n123,1,A,True\n")
    assert outcome.ok
    assert outcome.to_dict()["studentScores"][0]["percentage"] == 100


def test_empty_upload(two_question_exam, identity_variant):
    with pytest.raises(ValidationError) as exc:
        ingest(two_question_exam, [identity_variant(two_question_exam)], "")
    assert exc.value.code == "empty_table"
    with pytest.raises(ValidationError, match="No data rows found"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1,Q2\n")


def test_short_row_is_rejected_not_padded(two_question_exam, identity_variant):
    with pytest.raises(ValidationError) as exc:
        ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1,Q2\n123,1,A\n")
    assert exc.value.stage == "shape"
    assert exc.value.code == "ragged_row"
    assert exc.value.message == "Row 1 has 3 cells but the header has 4"


def test_long_row_is_rejected(two_question_exam, identity_variant):
    text = "studentId,variant,Q1,Q2\n1,1,A,True\n2,1,A,True,B\n"
    with pytest.raises(ValidationError, match="Row 2 has 5 cells but the header has 4"):
        ingest(two_question_exam, [identity_variant(two_question_exam)], text)


def test_empty_trailing_cell_still_counts_as_a_cell(two_question_exam, identity_variant):
    [record] = ingest(two_question_exam, [identity_variant(two_question_exam)], "studentId,variant,Q1,Q2\n9,1,A,\n")
    assert record.total_score == 1
    assert record.details[1].answer == ""
