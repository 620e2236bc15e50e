from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from typing import Literal, Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from examvariants.core.database import get_db
from examvariants.services import repository
from examvariants.services.analysis import AnalysisOptions, PsychometricAnalyzer, responses_from_records
from examvariants.services.export import ExportSections, global_csv, student_csv
from examvariants.services.integrity import (FlaggingConfig, flag_submissions, flagging_summary,
                                             student_similarity, variant_similarity)
from examvariants.services.percentile import PercentileRange

router = APIRouter()

def _percentile(lower: Optional[float], upper: Optional[float]) -> Optional[PercentileRange]:
  if lower is None and upper is None: return None
  return PercentileRange(lower=0.0 if lower is None else lower, upper=100.0 if upper is None else upper)

def _load(db: Session, generation_id: str):
  gen = repository.get_generation(db, generation_id)
  exam_row = repository.get_exam(db, gen.exam_id)
  exam = repository.exam_to_domain(exam_row)
  variants = [repository.variant_to_domain(v) for v in gen.variants]
  records = repository.load_results(db, exam.id, generation_id=generation_id)
  responses = responses_from_records(exam, variants, records)
  return exam_row, exam, variants, responses

@router.get("/{generation_id}/analysis")
def get_analysis(generation_id: str,
                 percentile_from: Optional[float] = Query(default=None, alias="percentileFrom"),
                 percentile_to: Optional[float] = Query(default=None, alias="percentileTo"),
                 by_variant: bool = Query(default=False, alias="byVariant"),
                 include_integrity: bool = Query(default=False, alias="includeIntegrity"),
                 min_probability: Optional[float] = Query(default=None, alias="minProbability"),
                 db: Session = Depends(get_db)):
  _, exam, variants, responses = _load(db, generation_id)
  options = AnalysisOptions(percentile_range=_percentile(percentile_from, percentile_to))
  analyzer = PsychometricAnalyzer(exam.questions)
  result = analyzer.analyze(responses, options)
  body = {"examId": exam.id, "examTitle": exam.title, "generationId": generation_id, **result.to_dict()}
  if by_variant:
    body["byVariant"] = {code: r.to_dict() for code, r in analyzer.analyze_by_variant(result.responses).items()}
  if include_integrity:
    config = FlaggingConfig()
    if min_probability is not None: config.low_threshold = min_probability
    flagged = flag_submissions(exam, variants, result.responses, config)
    body["integrity"] = {"variantSimilarity": variant_similarity(variants).to_dict(),
                         "studentSimilarity": student_similarity(result.responses).to_dict(),
                         "flaggedSubmissions": {"config": config.to_dict(), "summary": flagging_summary(flagged),
                                                "pairs": [f.to_dict() for f in flagged]}}
  return body

@router.get("/{generation_id}/export")
def export_analysis(generation_id: str,
                    export_type: Literal["global", "student"] = Query(default="global", alias="type"),
                    include_overall: bool = Query(default=True, alias="includeOverallAnalytics"),
                    include_questions: bool = Query(default=True, alias="includeQuestionAnalysis"),
                    include_statistics: bool = Query(default=True, alias="includeStatisticalData"),
                    include_difficulty: bool = Query(default=True, alias="includeDifficultyDistribution"),
                    percentile_from: Optional[float] = Query(default=None, alias="percentileFrom"),
                    percentile_to: Optional[float] = Query(default=None, alias="percentileTo"),
                    db: Session = Depends(get_db)):
  exam_row, exam, _, responses = _load(db, generation_id)
  result = PsychometricAnalyzer(exam.questions).analyze(
    responses, AnalysisOptions(percentile_range=_percentile(percentile_from, percentile_to)))
  if export_type == "student":
    names = repository.load_display_names(db, exam_row.course_id, exam_row.term_id)
    content, prefix = student_csv(result, exam.total_points, display_ids=names), "student-mapping"
  else:
    sections = ExportSections(overall_analytics=include_overall, question_analysis=include_questions,
                              statistical_data=include_statistics, difficulty_distribution=include_difficulty)
    content, prefix = global_csv(result, exam.title, sections), "exam-analytics"
  slug = "-".join((exam.title or exam.id).split())
  filename = f"{prefix}-{slug}-{datetime.now(timezone.utc).date().isoformat()}.csv"
  return Response(content=content, media_type="text/csv; charset=utf-8",
                  headers={"Content-Disposition": f'attachment; filename="{filename}"'})
