"""
In-memory domain objects passed between the services.

These are plain dataclasses so the generator, mapper, ingestor and analyzer
can run without a database; ``examvariants.services.repository`` converts
between them and the ORM rows.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TRUE_FALSE_OPTIONS = ["True", "False"]


def normalize_answer(value: Optional[str]) -> str:
    """Case- and whitespace-insensitive form used for every answer comparison."""
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()


def option_label(index: int) -> str:
    """0 -> "A", 25 -> "Z", 26 -> "AA" (spreadsheet column scheme)."""
    if index < 0:
        raise ValueError(f"Option index must be non-negative: {index}")
    label = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        label = chr(ord("A") + rem) + label
    return label


def label_index(label: str) -> Optional[int]:
    """Inverse of :func:`option_label`; None when ``label`` is not a letter label."""
    label = label.strip().upper()
    if not label or not label.isascii() or not label.isalpha():
        return None
    n = 0
    for ch in label:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def variant_code_for(variant_number: int) -> str:
    """Variant codes are derived from the variant number: 1 -> "A", 2 -> "B", ..."""
    if variant_number < 1:
        raise ValueError(f"Variant numbers start at 1: {variant_number}")
    return option_label(variant_number - 1)


@dataclass
class ExamQuestion:
    """Canonical question. Its position in ``Exam.questions`` is its canonical index."""
    id: str
    type: QuestionType
    correct_answer: str
    options: List[str] = field(default_factory=list)
    points: float = 1.0
    negative_points: Optional[float] = None  # awarded for a wrong, non-empty answer
    text: str = ""
    difficulty: Optional[str] = None
    topic: Optional[str] = None

    def effective_options(self) -> List[str]:
        if self.type == QuestionType.TRUE_FALSE:
            return list(self.options) if len(self.options) == 2 else list(TRUE_FALSE_OPTIONS)
        return list(self.options)

    def correct_option_index(self) -> Optional[int]:
        """Index of the correct option; ``correct_answer`` may be option text or a label."""
        options = self.effective_options()
        wanted = normalize_answer(self.correct_answer)
        for i, opt in enumerate(options):
            if normalize_answer(opt) == wanted:
                return i
        idx = label_index(self.correct_answer or "")
        if idx is not None and idx < len(options):
            return idx
        return None


@dataclass
class Exam:
    id: str
    questions: List[ExamQuestion]
    title: str = ""

    @property
    def total_points(self) -> float:
        return float(sum(q.points for q in self.questions))

    def question_index(self) -> Dict[str, int]:
        return {q.id: i for i, q in enumerate(self.questions)}


@dataclass
class VariantConfig:
    number_of_variants: int = 1
    randomize_question_order: bool = True
    randomize_option_order: bool = True
    randomize_true_false: bool = False
    seed: Optional[str] = None


@dataclass
class Variant:
    """
    One shuffled rendering of an exam.

    - question_order[p] is the canonical index shown at local position p+1
    - option_orders[c][k] is the canonical option index shown at local option
      position k of canonical question c
    """
    id: str
    generation_id: Optional[str]
    variant_number: int
    variant_code: str
    question_order: List[int]
    option_orders: List[List[int]]


@dataclass
class AnswerDetail:
    question_id: str
    answer: str
    is_correct: bool
    points: float


@dataclass
class StudentScore:
    """Scored record for one student; the contract between ingestion, persistence and analysis."""
    student_id: str
    total_score: float
    percentage: float
    variant_code: str
    details: List[AnswerDetail] = field(default_factory=list)
    variant_number: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "studentId": self.student_id,
            "totalScore": self.total_score,
            "percentage": self.percentage,
            "variantCode": self.variant_code,
            "details": [
                {"questionId": d.question_id, "answer": d.answer, "isCorrect": d.is_correct, "points": d.points}
                for d in self.details
            ],
        }
