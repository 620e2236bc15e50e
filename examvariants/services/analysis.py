"""
Classical item analysis over scored exam results.

Per question: difficulty (proportion correct), high/low group discrimination,
point-biserial correlation with the total score, distractor frequencies and a
t-test on the correlation. Per sample: Cronbach's alpha with the standard
error of measurement, and the score distribution.

Metrics that cannot be computed for a sample (single student, zero variance,
too few degrees of freedom) are reported as ``None``; the analysis itself
never fails on small or uniform samples.
"""
import math
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Sequence

import numpy as np
from scipy import stats

from examvariants.core.config import settings
from examvariants.models.domain import Exam, ExamQuestion, QuestionType, StudentScore, Variant, option_label
from examvariants.services import answer_key
from examvariants.services.percentile import PercentileRange, apply_percentile_filter, percentile_slice

logger = logging.getLogger(__name__)

DIFFICULTY_BANDS = (
    ("veryEasy", 0.8),   # p > 0.8
    ("easy", 0.6),
    ("moderate", 0.4),
    ("hard", 0.2),
    ("veryHard", None),  # p <= 0.2
)


@dataclass
class QuestionResponse:
    question_id: str
    is_correct: bool
    answer: str = ""
    selected_option: Optional[int] = None  # canonical option index
    points: float = 0.0


@dataclass
class StudentResponse:
    student_id: str
    total_score: float
    percentage: float
    variant_code: Optional[str] = None
    responses: List[QuestionResponse] = field(default_factory=list)

    def by_question(self) -> Dict[str, QuestionResponse]:
        return {r.question_id: r for r in self.responses}


@dataclass
class AnalysisOptions:
    percentile_range: Optional[PercentileRange] = None
    confidence_level: float = field(default_factory=lambda: settings.ANALYSIS_CONFIDENCE_LEVEL)
    group_fraction: float = field(default_factory=lambda: settings.ANALYSIS_GROUP_FRACTION)
    min_sample_size: int = field(default_factory=lambda: settings.ANALYSIS_MIN_SAMPLE_SIZE)


@dataclass
class AnalysisResult:
    questions: List[Dict[str, Any]]
    summary: Dict[str, Any]
    metadata: Dict[str, Any]
    responses: List[StudentResponse] = field(default_factory=list)

    def question(self, question_id: str) -> Optional[Dict[str, Any]]:
        return next((q for q in self.questions if q["questionId"] == question_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionAnalysis": self.questions,
            "summary": self.summary,
            "metadata": self.metadata,
            "students": [
                {"studentId": r.student_id, "totalScore": r.total_score,
                 "percentage": r.percentage, "variantCode": r.variant_code}
                for r in self.responses
            ],
        }


def _num(value) -> Optional[float]:
    """Plain float for JSON, None for missing or non-finite values."""
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    return _num(np.mean(present)) if present else None


def point_biserial(item: np.ndarray, totals: np.ndarray) -> Optional[float]:
    """
    Correlation between a 0/1 item vector and total scores.

    r = (M1 - M0) / s * sqrt(p * q) with the population standard deviation;
    None when either vector has no variance.
    """
    n = len(item)
    if n < 2:
        return None
    s = np.std(totals)
    p = float(np.mean(item))
    if s == 0 or p == 0 or p == 1:
        return None
    m1 = np.mean(totals[item == 1])
    m0 = np.mean(totals[item == 0])
    r = (m1 - m0) / s * math.sqrt(p * (1 - p))
    return _num(max(-1.0, min(1.0, r)))


def correlation_test(r: Optional[float], n: int, confidence_level: float) -> Dict[str, Any]:
    """Two-sided t-test of H0: rho = 0 with df = n - 2."""
    result = {"isSignificant": None, "pValue": None, "testStatistic": None,
              "degreesOfFreedom": None, "criticalValue": None, "confidenceLevel": confidence_level}
    if r is None or n < 3:
        return result
    df = n - 2
    alpha = 1 - confidence_level
    critical = stats.t.ppf(1 - alpha / 2, df)
    if abs(r) >= 1:
        t_stat, p_value = None, 0.0
    else:
        t_stat = r * math.sqrt(df / (1 - r * r))
        p_value = 2 * stats.t.sf(abs(t_stat), df)
    result.update({
        "isSignificant": bool(p_value < alpha),
        "pValue": _num(p_value),
        "testStatistic": _num(t_stat),
        "degreesOfFreedom": df,
        "criticalValue": _num(critical),
    })
    return result


def proportion_interval(p: Optional[float], n: int, confidence_level: float) -> Optional[Dict[str, float]]:
    """Wald interval for a proportion, clipped to [0, 1]."""
    if p is None or n == 0:
        return None
    z = stats.norm.ppf(1 - (1 - confidence_level) / 2)
    half = z * math.sqrt(p * (1 - p) / n)
    return {"lower": _num(max(0.0, p - half)), "upper": _num(min(1.0, p + half))}


def cronbach_alpha(matrix: np.ndarray) -> Dict[str, Optional[float]]:
    """matrix is students x items (points awarded)."""
    n, k = matrix.shape if matrix.ndim == 2 else (0, 0)
    if n < 2 or k < 2:
        return {"cronbachsAlpha": None, "standardError": None}
    item_var = np.var(matrix, axis=0, ddof=1).sum()
    total_var = np.var(matrix.sum(axis=1), ddof=1)
    if total_var == 0:
        return {"cronbachsAlpha": None, "standardError": None}
    alpha = (k / (k - 1)) * (1 - item_var / total_var)
    sem = math.sqrt(total_var * (1 - alpha)) if alpha <= 1 else None
    return {"cronbachsAlpha": _num(alpha), "standardError": _num(sem)}


def score_distribution(scores: np.ndarray) -> Dict[str, Any]:
    if scores.size == 0:
        return {"mean": None, "median": None, "standardDeviation": None, "skewness": None,
                "kurtosis": None, "min": None, "max": None,
                "quartiles": {"q1": None, "q2": None, "q3": None}}
    sd = np.std(scores)
    skewness = stats.skew(scores, bias=False) if scores.size >= 3 and sd > 0 else None
    kurt = stats.kurtosis(scores, bias=False) if scores.size >= 4 and sd > 0 else None
    q1, q2, q3 = np.percentile(scores, [25, 50, 75])
    return {
        "mean": _num(np.mean(scores)),
        "median": _num(np.median(scores)),
        "standardDeviation": _num(sd),
        "skewness": _num(skewness),
        "kurtosis": _num(kurt),
        "min": _num(np.min(scores)),
        "max": _num(np.max(scores)),
        "quartiles": {"q1": _num(q1), "q2": _num(q2), "q3": _num(q3)},
    }


def difficulty_band(p: Optional[float]) -> Optional[str]:
    if p is None:
        return None
    for name, floor in DIFFICULTY_BANDS:
        if floor is None or p > floor:
            return name
    return None


class PsychometricAnalyzer:
    """Item and test statistics for one exam's canonical questions."""

    def __init__(self, questions: List[ExamQuestion]):
        self.questions = questions

    def analyze(self, responses: Sequence[StudentResponse], options: Optional[AnalysisOptions] = None) -> AnalysisResult:
        options = options or AnalysisOptions()
        sample = percentile_slice(responses, options.percentile_range)
        n, k = len(sample), len(self.questions)

        lookups = [s.by_question() for s in sample]
        correct = np.zeros((n, k))
        points = np.zeros((n, k))
        for i, answers in enumerate(lookups):
            for j, q in enumerate(self.questions):
                r = answers.get(q.id)
                if r is not None:
                    correct[i, j] = 1.0 if r.is_correct else 0.0
                    points[i, j] = r.points
        totals = np.array([s.total_score for s in sample], dtype=float)

        upper, lower = self._groups(totals, options.group_fraction)
        question_stats = [
            self._question_stats(j, q, sample, lookups, correct[:, j], totals, upper, lower, options)
            for j, q in enumerate(self.questions)
        ]

        difficulty_counts = OrderedDict((name, 0) for name, _ in DIFFICULTY_BANDS)
        for qs in question_stats:
            band = difficulty_band(qs["difficultyIndex"])
            if band:
                difficulty_counts[band] += 1

        summary = {
            "averageDifficulty": _mean([q["difficultyIndex"] for q in question_stats]),
            "averageDiscrimination": _mean([q["discriminationIndex"] for q in question_stats]),
            "averagePointBiserial": _mean([q["pointBiserialCorrelation"] for q in question_stats]),
            "reliabilityMetrics": cronbach_alpha(points),
            "scoreDistribution": score_distribution(totals),
            "difficultyDistribution": dict(difficulty_counts),
        }

        warnings = []
        if n < options.min_sample_size:
            warnings.append(f"Sample size {n} is below the recommended minimum of {options.min_sample_size}")
        metadata = {
            "totalStudents": len(responses),
            "sampleSize": n,
            "excludedStudents": len(responses) - n,
            "totalQuestions": k,
            "variants": sorted({s.variant_code for s in sample if s.variant_code}),
            "percentileFilter": apply_percentile_filter(responses, options.percentile_range).to_dict(),
            "confidenceLevel": options.confidence_level,
            "groupFraction": options.group_fraction,
            "warnings": warnings,
        }
        logger.debug("Analyzed %d questions over %d of %d students", k, n, len(responses))
        return AnalysisResult(questions=question_stats, summary=summary, metadata=metadata, responses=list(sample))

    def analyze_by_variant(self, responses: Sequence[StudentResponse],
                           options: Optional[AnalysisOptions] = None) -> Dict[str, AnalysisResult]:
        groups: Dict[str, List[StudentResponse]] = {}
        for r in responses:
            groups.setdefault(r.variant_code or "", []).append(r)
        return {code: self.analyze(groups[code], options) for code in sorted(groups)}

    @staticmethod
    def _groups(totals: np.ndarray, fraction: float):
        """Row indices of the high and low scoring groups, or (None, None) below two students."""
        n = len(totals)
        if n < 2:
            return None, None
        size = min(max(1, int(math.floor(n * fraction))), n // 2)
        order = np.argsort(-totals, kind="stable")
        return order[:size], order[-size:]

    def _question_stats(self, j: int, question: ExamQuestion, sample, lookups, item: np.ndarray,
                        totals: np.ndarray, upper, lower, options: AnalysisOptions) -> Dict[str, Any]:
        n = len(sample)
        correct_count = int(item.sum())
        difficulty = correct_count / n if n else None
        discrimination = None
        if upper is not None:
            discrimination = _num(item[upper].mean() - item[lower].mean())
        r = point_biserial(item, totals)

        return {
            "questionId": question.id,
            "questionNumber": j + 1,
            "questionType": question.type.value,
            "text": question.text,
            "topic": question.topic,
            "points": question.points,
            "totalResponses": n,
            "correctResponses": correct_count,
            "difficultyIndex": _num(difficulty),
            "difficultyLevel": difficulty_band(difficulty),
            "discriminationIndex": discrimination,
            "pointBiserialCorrelation": r,
            "confidenceInterval": proportion_interval(difficulty, n, options.confidence_level),
            "statisticalSignificance": correlation_test(r, n, options.confidence_level),
            "distractorAnalysis": self._distractors(question, lookups, totals)
            if question.type == QuestionType.MULTIPLE_CHOICE else None,
        }

    @staticmethod
    def _distractors(question: ExamQuestion, lookups: List[Dict[str, QuestionResponse]],
                     totals: np.ndarray) -> Dict[str, Any]:
        n = len(lookups)
        options = question.effective_options()
        correct_index = question.correct_option_index()
        chosen = np.full(n, -1)
        omitted = invalid = 0
        for i, answers in enumerate(lookups):
            r = answers.get(question.id)
            if r is None or not (r.answer or "").strip():
                omitted += 1
            elif r.selected_option is None or not 0 <= r.selected_option < len(options):
                invalid += 1
            else:
                chosen[i] = r.selected_option

        rows = []
        for idx, text in enumerate(options):
            picked = (chosen == idx).astype(float)
            count = int(picked.sum())
            rows.append({
                "option": option_label(idx),
                "text": text,
                "isCorrect": idx == correct_index,
                "frequency": count,
                "percentage": _num(count / n * 100) if n else None,
                "pointBiserial": point_biserial(picked, totals),
            })
        return {
            "options": rows,
            "distractors": [row for row in rows if not row["isCorrect"]],
            "omittedCount": omitted,
            "omittedPercentage": _num(omitted / n * 100) if n else None,
            "invalidCount": invalid,
        }


def responses_from_records(exam: Exam, variants: Sequence[Variant],
                           records: Sequence[StudentScore]) -> List[StudentResponse]:
    """
    Build analyzer input from scored records, resolving each raw local answer
    to the canonical option it selected on the student's variant.
    """
    by_code = {v.variant_code: v for v in variants}
    index = exam.question_index()
    out = []
    for record in records:
        variant = by_code.get(record.variant_code)
        responses = []
        for d in record.details:
            selected = None
            c = index.get(d.question_id)
            if variant is not None and c is not None:
                position = answer_key.local_position_of(variant, c)
                selected = answer_key.canonical_option_of(exam, variant, position, d.answer)
            responses.append(QuestionResponse(question_id=d.question_id, is_correct=d.is_correct,
                                              answer=d.answer or "", selected_option=selected,
                                              points=d.points))
        out.append(StudentResponse(student_id=record.student_id, total_score=record.total_score,
                                   percentage=record.percentage, variant_code=record.variant_code,
                                   responses=responses))
    return out
