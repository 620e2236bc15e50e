"""
CSV renderings of an analysis: the aggregate/question-level report and the
per-student mapping.
"""
import csv
import io
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

import pandas as pd

from examvariants.services.analysis import AnalysisResult
from examvariants.services.percentile import apply_percentile_filter

GRADE_BANDS = (
    (90, "A+"), (85, "A"), (80, "A-"),
    (76, "B+"), (72, "B"), (68, "B-"),
    (64, "C+"), (60, "C"), (50, "C-"),
)

STUDENT_COLUMNS = ["Student ID", "Display ID", "Rank", "Score", "Max Score",
                   "Percentage", "Variant", "Performance Category"]


@dataclass
class ExportSections:
    overall_analytics: bool = True
    question_analysis: bool = True
    statistical_data: bool = True
    difficulty_distribution: bool = True


def performance_category(percentage: float) -> str:
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return "F"


def _fmt(value: Optional[float], digits: int = 3, scale: float = 1.0, suffix: str = "") -> str:
    if value is None:
        return "N/A"
    return f"{value * scale:.{digits}f}{suffix}"


def global_csv(result: AnalysisResult, exam_title: str, sections: Optional[ExportSections] = None,
               generated_at: Optional[datetime] = None) -> str:
    sections = sections or ExportSections()
    summary, meta = result.summary, result.metadata
    percentile = meta.get("percentileFilter") or {}
    filtered = percentile.get("label") not in (None, "All Students")

    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    w.writerow([f"Exam Analytics Export: {exam_title}" + (f" ({percentile['label']})" if filtered else "")])
    w.writerow(["Generated on", (generated_at or datetime.now(timezone.utc)).isoformat()])
    w.writerow(["Total Students", meta["sampleSize"]])
    w.writerow(["Total Questions", meta["totalQuestions"]])
    if filtered:
        w.writerow(["Percentile Filter", f"{percentile['label']} ({percentile['from']:g}% - {percentile['to']:g}%)"])
    w.writerow([])

    if sections.overall_analytics:
        w.writerow(["Summary Statistics"])
        w.writerow(["Average Difficulty", _fmt(summary["averageDifficulty"], 2, 100, "%")])
        w.writerow(["Average Discrimination", _fmt(summary["averageDiscrimination"])])
        w.writerow(["Average Point-Biserial", _fmt(summary["averagePointBiserial"])])
        w.writerow([])

    if sections.question_analysis:
        w.writerow(["Question Analysis"])
        w.writerow(["Question #", "Question Text", "Type", "Difficulty", "Discrimination", "Point-Biserial",
                    "Correct Responses", "Total Responses", "Significance"])
        for q in result.questions:
            significant = q["statisticalSignificance"]["isSignificant"]
            w.writerow([
                q["questionNumber"], q["text"], q["questionType"],
                _fmt(q["difficultyIndex"], 2, 100, "%"),
                _fmt(q["discriminationIndex"]),
                _fmt(q["pointBiserialCorrelation"]),
                q["correctResponses"], q["totalResponses"],
                "N/A" if significant is None else ("Significant" if significant else "Not Significant"),
            ])
        w.writerow([])

    if sections.statistical_data:
        reliability, dist = summary["reliabilityMetrics"], summary["scoreDistribution"]
        w.writerow(["Statistical Analysis"])
        w.writerow(["Cronbach's Alpha", _fmt(reliability["cronbachsAlpha"])])
        w.writerow(["Standard Error", _fmt(reliability["standardError"])])
        w.writerow(["Mean Score", _fmt(dist["mean"], 2)])
        w.writerow(["Standard Deviation", _fmt(dist["standardDeviation"], 2)])
        w.writerow([])

    if sections.difficulty_distribution:
        counts = summary["difficultyDistribution"]
        w.writerow(["Difficulty Distribution"])
        w.writerow(["Very Easy (>80%)", counts["veryEasy"]])
        w.writerow(["Easy (60-80%)", counts["easy"]])
        w.writerow(["Medium (40-60%)", counts["moderate"]])
        w.writerow(["Hard (20-40%)", counts["hard"]])
        w.writerow(["Very Hard (<=20%)", counts["veryHard"]])
    return buf.getvalue()


def student_csv(result: AnalysisResult, max_score: float, display_ids: Optional[Dict[str, str]] = None) -> str:
    """One row per student of the analysed sample, ranked by percentage within it."""
    display_ids = display_ids or {}
    band = apply_percentile_filter(result.responses)
    rows = [
        {
            "Student ID": s.student_id,
            "Display ID": display_ids.get(s.student_id) or s.student_id,
            "Rank": rank,
            "Score": s.score,
            "Max Score": max_score,
            "Percentage": f"{s.percentage:.2f}%",
            "Variant": s.variant_code or "Unknown",
            "Performance Category": performance_category(s.percentage),
        }
        for rank, s in enumerate(band.students, start=1)
    ]
    frame = pd.DataFrame(rows, columns=STUDENT_COLUMNS)
    return frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
