import math
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Dict, Any

import numpy as np

from examvariants.core.config import settings
from examvariants.models.domain import Exam, Variant, normalize_answer
from examvariants.services import answer_key
from examvariants.services.analysis import PsychometricAnalyzer, StudentResponse
from examvariants.services.ingestion import score_row

logger = logging.getLogger(__name__)


@dataclass
class SimilarityMatrix:
    labels: List[str]
    values: np.ndarray  # NaN where undefined

    def get(self, a: str, b: str) -> Optional[float]:
        v = self.values[self.labels.index(a), self.labels.index(b)]
        return None if np.isnan(v) else float(v)

    def pairs_above(self, threshold: float) -> List[Dict[str, Any]]:
        out = []
        for i in range(len(self.labels)):
            for j in range(i + 1, len(self.labels)):
                v = self.values[i, j]
                if not np.isnan(v) and v >= threshold:
                    out.append({"first": self.labels[i], "second": self.labels[j], "similarity": float(v)})
        return sorted(out, key=lambda p: -p["similarity"])

    def to_dict(self) -> Dict[str, Any]:
        return {"labels": self.labels,
                "matrix": [[None if np.isnan(v) else float(v) for v in row] for row in self.values]}


def _variant_pair(a: Variant, b: Variant) -> float:
    q = np.mean(np.array(a.question_order) == np.array(b.question_order)) if a.question_order else 1.0
    per_question = [np.mean(np.array(x) == np.array(y)) for x, y in zip(a.option_orders, b.option_orders) if x]
    o = np.mean(per_question) if per_question else 1.0
    return float((q + o) / 2)


def variant_similarity(variants: Sequence[Variant]) -> SimilarityMatrix:
    """
    Positional agreement between variants: the mean of the share of local
    positions holding the same question and the share of option positions
    holding the same option. Identical variants score 1.
    """
    variants = sorted(variants, key=lambda v: v.variant_number)
    n = len(variants)
    values = np.ones((n, n))
    for i in range(n):
        for j in range(i + 1, n):
            values[i, j] = values[j, i] = _variant_pair(variants[i], variants[j])
    return SimilarityMatrix(labels=[v.variant_code for v in variants], values=values)


def _canonical_answer(r) -> Optional[Any]:
    if r.selected_option is not None:
        return r.selected_option
    answer = normalize_answer(r.answer)
    return answer or None


def student_similarity(responses: Sequence[StudentResponse]) -> SimilarityMatrix:
    """
    Share of identical canonical answers on the questions both students
    answered. Undefined for pairs without a shared answered question.
    """
    students = sorted(responses, key=lambda s: str(s.student_id))
    answers = [{qid: _canonical_answer(r) for qid, r in s.by_question().items() if _canonical_answer(r) is not None}
               for s in students]
    n = len(students)
    values = np.full((n, n), np.nan)
    for i in range(n):
        if answers[i]:
            values[i, i] = 1.0
        for j in range(i + 1, n):
            shared = answers[i].keys() & answers[j].keys()
            if shared:
                same = sum(1 for q in shared if answers[i][q] == answers[j][q])
                values[i, j] = values[j, i] = same / len(shared)
    logger.debug("Computed answer similarity for %d students", n)
    return SimilarityMatrix(labels=[str(s.student_id) for s in students], values=values)


# ---------------------------------------------------------------------------
# Flagged submissions
# ---------------------------------------------------------------------------

@dataclass
class FlaggingConfig:
    high_threshold: float = field(default_factory=lambda: settings.FLAG_HIGH_PROBABILITY)
    medium_threshold: float = field(default_factory=lambda: settings.FLAG_MEDIUM_PROBABILITY)
    low_threshold: float = field(default_factory=lambda: settings.FLAG_LOW_PROBABILITY)
    invert_variant_similarity: bool = False

    def level(self, probability: float) -> Optional[str]:
        if probability >= self.high_threshold:
            return "high"
        if probability >= self.medium_threshold:
            return "medium"
        if probability >= self.low_threshold:
            return "low"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"highProbabilityThreshold": self.high_threshold,
                "mediumProbabilityThreshold": self.medium_threshold,
                "lowProbabilityThreshold": self.low_threshold,
                "invertVariantSimilarity": self.invert_variant_similarity}


@dataclass
class FlaggedPair:
    student1: str
    student2: str
    probability: float
    level: Optional[str]
    student1_score: float
    student2_score: float
    student1_variant: str
    student2_variant: str
    variant_similarity: float
    response_similarity: float
    class_average: float
    student1_biserial: Optional[float]
    student2_biserial: Optional[float]
    student1_cross_grade: Optional[float] = None
    student2_cross_grade: Optional[float] = None
    student1_grade_change: float = 0.0
    student2_grade_change: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student1": self.student1,
            "student2": self.student2,
            "probability": self.probability,
            "level": self.level,
            "student1Score": self.student1_score,
            "student2Score": self.student2_score,
            "student1Variant": self.student1_variant,
            "student2Variant": self.student2_variant,
            "variantSimilarity": self.variant_similarity,
            "responseSimilarity": self.response_similarity,
            "classAverageScore": self.class_average,
            "student1Biserial": self.student1_biserial,
            "student2Biserial": self.student2_biserial,
            "student1CrossGrade": self.student1_cross_grade,
            "student2CrossGrade": self.student2_cross_grade,
            "student1GradeChange": self.student1_grade_change,
            "student2GradeChange": self.student2_grade_change,
        }


def copying_probability(variant_sim: float, response_sim: float, score1: float, score2: float,
                        class_average: float, biserial1: Optional[float], biserial2: Optional[float],
                        cross1: Optional[float] = None, cross2: Optional[float] = None) -> float:
    """
    p = sqrt(Sv*Ss/(Sv+Ss) * (s1 + s2 + max(c1, c2)) / avg * |Q1*Q2|), clamped to [0, 0.999].

    Similarities are clamped to [0, 1] and scores to [0, 100]; an undefined or
    negative variant point-biserial counts as 0 and an undefined cross grade
    as 0. The average is floored at 0.1.
    """
    sv = min(1.0, max(0.0, variant_sim))
    ss = min(1.0, max(0.0, response_sim))
    s1 = min(100.0, max(0.0, score1))
    s2 = min(100.0, max(0.0, score2))
    average = max(0.1, class_average)
    q1 = max(0.0, biserial1 or 0.0)
    q2 = max(0.0, biserial2 or 0.0)

    similarity = sv * ss / (sv + ss) if sv + ss > 0 else 0.0
    scores = (s1 + s2 + max(cross1 or 0.0, cross2 or 0.0)) / average
    p = math.sqrt(similarity * scores * abs(q1 * q2))
    return min(0.999, max(0.0, p))


def cross_grade(exam: Exam, own: Variant, other: Variant, student: StudentResponse) -> float:
    """Percentage the student's sheet earns when scored against ``other``'s key."""
    index = exam.question_index()
    local = [""] * len(own.question_order)
    for r in student.responses:
        c = index.get(r.question_id)
        if c is not None:
            local[answer_key.local_position_of(own, c) - 1] = r.answer or ""
    return score_row(exam, other, str(student.student_id), local).percentage


def flag_submissions(exam: Exam, variants: Sequence[Variant], responses: Sequence[StudentResponse],
                     config: Optional[FlaggingConfig] = None) -> List[FlaggedPair]:
    """
    Score every pair of students for likely copying and return the pairs at
    or above ``config.low_threshold``, most likely first.

    Students whose variant is not among ``variants`` are left out, as are
    pairs without a shared answered question.
    """
    config = config or FlaggingConfig()
    by_code = {v.variant_code: v for v in variants}
    students = [s for s in responses if s.variant_code in by_code]
    if len(students) < 2:
        return []

    answers = student_similarity(students)
    layouts = variant_similarity(list(by_code.values()))
    class_average = float(np.mean([s.percentage for s in students]))
    biserials = {code: r.summary["averagePointBiserial"]
                 for code, r in PsychometricAnalyzer(exam.questions).analyze_by_variant(students).items()}
    by_id = {str(s.student_id): s for s in students}

    flagged = []
    labels = answers.labels
    for i in range(len(labels)):
        for j in range(i + 1, len(labels)):
            response_sim = answers.get(labels[i], labels[j])
            if response_sim is None:
                continue
            a, b = by_id[labels[i]], by_id[labels[j]]
            va, vb = by_code[a.variant_code], by_code[b.variant_code]
            variant_sim = layouts.get(va.variant_code, vb.variant_code)
            if config.invert_variant_similarity:
                variant_sim = 1.0 - variant_sim

            cross_a = cross_b = None
            change_a = change_b = 0.0
            if va.variant_code != vb.variant_code:
                cross_a = cross_grade(exam, va, vb, a)
                cross_b = cross_grade(exam, vb, va, b)
                change_a, change_b = cross_a - a.percentage, cross_b - b.percentage

            p = copying_probability(variant_sim, response_sim, a.percentage, b.percentage, class_average,
                                    biserials.get(a.variant_code), biserials.get(b.variant_code),
                                    cross_a, cross_b)
            if p < config.low_threshold:
                continue
            flagged.append(FlaggedPair(
                student1=labels[i], student2=labels[j], probability=p, level=config.level(p),
                student1_score=a.percentage, student2_score=b.percentage,
                student1_variant=a.variant_code, student2_variant=b.variant_code,
                variant_similarity=variant_sim, response_similarity=response_sim,
                class_average=class_average,
                student1_biserial=biserials.get(a.variant_code), student2_biserial=biserials.get(b.variant_code),
                student1_cross_grade=cross_a, student2_cross_grade=cross_b,
                student1_grade_change=change_a, student2_grade_change=change_b,
            ))
    logger.info("Flagged %d of %d student pairs for exam %s", len(flagged),
                len(labels) * (len(labels) - 1) // 2, exam.id)
    return sorted(flagged, key=lambda f: -f.probability)


def flagging_summary(flagged: Sequence[FlaggedPair]) -> Dict[str, Any]:
    involved = {f.student1 for f in flagged} | {f.student2 for f in flagged}
    return {
        "totalFlagged": len(flagged),
        "uniqueStudentsInvolved": len(involved),
        "averageProbability": float(np.mean([f.probability for f in flagged])) if flagged else 0.0,
        "averageSimilarity": float(np.mean([f.response_similarity for f in flagged])) if flagged else 0.0,
    }
