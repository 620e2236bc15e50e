"""
Answer-table ingestion.

An uploaded CSV passes through a fixed chain of stages; each stage either
returns the value the next one needs or raises ``ValidationError`` carrying
its stage name, so a failure is attributed to exactly one check and nothing
downstream runs. Scoring happens only once every stage has passed, and no
stage touches the database.

Table layout::

    studentId,variant,Q1,Q2,...
    123,1,A,True

Cells hold the variant-local option label ("A", "B", ...) or a True/False
literal.
"""
import csv
import io
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Any

import pandas as pd

from examvariants.core.errors import ValidationError
from examvariants.models.domain import AnswerDetail, Exam, StudentScore, Variant, normalize_answer
from examvariants.services import answer_key

logger = logging.getLogger(__name__)

STUDENT_COLUMNS = ("studentid", "student_id", "student")
VARIANT_COLUMNS = ("variant",)
_QUESTION_HEADER = re.compile(r"^q(\d+)$", re.IGNORECASE)

STAGE_HEADER = "header"
STAGE_SHAPE = "shape"
STAGE_VARIANTS = "variants"
STAGE_ROWS = "rows"


@dataclass
class UploadContext:
    """Everything an upload is validated against."""
    exam: Exam
    variants: List[Variant]
    roster: Set[str] = field(default_factory=set)


@dataclass
class ParsedTable:
    frame: pd.DataFrame
    student_column: str
    variant_column: str
    answer_columns: List[str] = field(default_factory=list)


@dataclass
class IngestionOutcome:
    ok: bool
    records: List[StudentScore] = field(default_factory=list)
    stage: Optional[str] = None
    code: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "count": len(self.records),
                    "studentScores": [r.to_dict() for r in self.records]}
        return {"ok": False, "stage": self.stage, "code": self.code, "error": self.error}


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def read_table(text: str) -> pd.DataFrame:
    try:
        # ragged rows are rejected by check_row_widths, not here
        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skipinitialspace=True,
                            index_col=False, on_bad_lines="skip")
    except pd.errors.EmptyDataError:
        raise ValidationError("Uploaded table is empty", STAGE_HEADER, "empty_table") from None
    except pd.errors.ParserError as exc:
        raise ValidationError(f"Uploaded table could not be parsed: {exc}", STAGE_HEADER, "malformed_table") from exc
    frame.columns = [str(c).strip() for c in frame.columns]
    # a trailing delimiter in the header yields an empty "Unnamed: n" column
    blank = [c for c in frame.columns if c.startswith("Unnamed:") and (frame[c].str.strip() == "").all()]
    return frame.drop(columns=blank)


def _find_column(columns: List[str], accepted: Tuple[str, ...]) -> Optional[str]:
    for c in columns:
        if c.lower() in accepted:
            return c
    return None


def check_header(frame: pd.DataFrame) -> ParsedTable:
    columns = list(frame.columns)
    student = _find_column(columns, STUDENT_COLUMNS)
    if student is None:
        raise ValidationError("No student identifier column found (expected 'studentId')",
                              STAGE_HEADER, "missing_student_column")
    variant = _find_column(columns, VARIANT_COLUMNS)
    if variant is None:
        raise ValidationError("No variant column found (expected 'variant')", STAGE_HEADER, "missing_variant_column")
    if frame.empty:
        raise ValidationError("No data rows found", STAGE_HEADER, "no_rows")

    answers = [c for c in columns if c not in (student, variant)]
    numbered = [_QUESTION_HEADER.match(c) for c in answers]
    if answers and all(numbered):
        answers = [c for _, c in sorted(zip((int(m.group(1)) for m in numbered), answers))]
    return ParsedTable(frame=frame, student_column=student, variant_column=variant, answer_columns=answers)


def check_shape(table: ParsedTable, exam: Exam) -> ParsedTable:
    expected = len(exam.questions)
    if expected == 0:
        raise ValidationError("No exam questions found", STAGE_SHAPE, "no_questions")
    actual = len(table.answer_columns)
    if actual != expected:
        raise ValidationError(
            f"Question count mismatch! CSV has {actual} answer columns but exam has {expected} questions",
            STAGE_SHAPE, "question_count_mismatch")
    return table


def check_row_widths(text: str) -> List[int]:
    """
    Raw cell count of every data row, which must equal the header's.

    pandas pads a short row with empty cells, which would then score as
    omitted answers, so widths are taken from the raw text instead. Blank
    lines are skipped as ``read_table`` skips them.
    """
    rows = [r for r in csv.reader(io.StringIO(text)) if r]
    if not rows:
        return []
    header, widths = len(rows[0]), [len(r) for r in rows[1:]]
    for row, width in enumerate(widths, start=1):
        if width != header:
            raise ValidationError(f"Row {row} has {width} cells but the header has {header}",
                                  STAGE_SHAPE, "ragged_row")
    return widths


def check_variants(table: ParsedTable, variants: List[Variant]) -> List[Variant]:
    """Resolve every row's variant; returns one Variant per row."""
    if not variants:
        raise ValidationError("No exam variants found", STAGE_VARIANTS, "no_variants")
    by_number = {v.variant_number: v for v in variants}
    available = ", ".join(str(n) for n in sorted(by_number))

    resolved, invalid = [], []
    for row, raw in enumerate(table.frame[table.variant_column], start=1):
        value = raw.strip()
        number = int(value) if value.isdigit() else None
        if number not in by_number:
            invalid.append(f"Row {row}: '{value}'")
            continue
        resolved.append(by_number[number])
    if invalid:
        raise ValidationError(
            f"Invalid variant numbers found: {'; '.join(invalid)}. Available variants: {available}",
            STAGE_VARIANTS, "invalid_variant_numbers")

    used = sorted({v.variant_number for v in resolved})
    if len(used) != len(by_number):
        raise ValidationError(
            f"Variant count mismatch! CSV uses {len(used)} variants ({', '.join(map(str, used))}) "
            f"but the exam has {len(by_number)} variants ({available})",
            STAGE_VARIANTS, "variant_count_mismatch")
    return resolved


def check_students(table: ParsedTable, roster: Set[str]) -> List[str]:
    ids = [s.strip() for s in table.frame[table.student_column]]
    missing = [str(row) for row, s in enumerate(ids, start=1) if not s]
    if missing:
        raise ValidationError(f"Missing student identifiers in rows: {', '.join(missing)}",
                              STAGE_ROWS, "missing_student_ids")
    seen, duplicates = set(), []
    for s in ids:
        if s in seen and s not in duplicates:
            duplicates.append(s)
        seen.add(s)
    if duplicates:
        raise ValidationError(f"Duplicate student identifiers found: {', '.join(duplicates)}",
                              STAGE_ROWS, "duplicate_student_ids")
    if roster:
        unknown = [s for s in ids if s not in roster]
        if unknown:
            raise ValidationError(f"Unknown student identifiers found: {', '.join(unknown)}",
                                  STAGE_ROWS, "unknown_student_ids")
    return ids


def score_row(exam: Exam, variant: Variant, student_id: str, answers: List[str]) -> StudentScore:
    """Score one row; ``answers`` are in the variant's local column order."""
    details = []
    for position, raw in enumerate(answers, start=1):
        question = exam.questions[answer_key.canonical_index_of(variant, position)]
        answer = raw.strip()
        correct = answer_key.is_correct_local_answer(exam, variant, position, answer)
        if correct:
            points = question.points
        elif normalize_answer(answer) and question.negative_points is not None:
            points = question.negative_points
        else:
            points = 0.0
        details.append(AnswerDetail(question_id=question.id, answer=answer, is_correct=correct, points=float(points)))

    total = float(sum(d.points for d in details))
    possible = exam.total_points
    return StudentScore(
        student_id=student_id,
        total_score=total,
        percentage=(total / possible * 100.0) if possible > 0 else 0.0,
        variant_code=variant.variant_code,
        details=details,
        variant_number=variant.variant_number,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ResultIngestor:
    """Validates and scores answer tables for one exam generation."""

    def __init__(self, context: UploadContext):
        self.context = context

    def ingest(self, text: str) -> List[StudentScore]:
        exam = self.context.exam
        table = check_header(read_table(text))
        check_shape(table, exam)
        check_row_widths(text)
        row_variants = check_variants(table, self.context.variants)
        student_ids = check_students(table, self.context.roster)

        answer_rows = table.frame[table.answer_columns].values.tolist()
        records = [score_row(exam, variant, sid, answers)
                   for sid, variant, answers in zip(student_ids, row_variants, answer_rows)]
        logger.info("Scored %d students for exam %s", len(records), exam.id)
        return records

    def check(self, text: str) -> IngestionOutcome:
        """Like :meth:`ingest` but reports a failure instead of raising it."""
        try:
            return IngestionOutcome(ok=True, records=self.ingest(text))
        except ValidationError as exc:
            logger.info("Upload rejected at %s stage: %s", exc.stage, exc.message)
            return IngestionOutcome(ok=False, stage=exc.stage, code=exc.code, error=exc.message)
