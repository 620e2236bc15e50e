from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from examvariants.core.database import get_db
from examvariants.models.domain import AnswerDetail, StudentScore
from examvariants.services.persistence import ScorePersistence

router = APIRouter()

class DetailIn(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  question_id: str = Field(alias="questionId")
  answer: Optional[str] = ""
  is_correct: bool = Field(alias="isCorrect")
  points: float = 0.0

class StudentScoreIn(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  total_score: float = Field(alias="totalScore")
  percentage: float = 0.0
  details: List[DetailIn] = []
  variant_code: Optional[str] = Field(default=None, alias="variantCode")

class SaveResults(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  exam_id: str = Field(alias="examId")
  term_id: Optional[str] = Field(default=None, alias="termId")
  course_id: Optional[str] = Field(default=None, alias="courseId")
  student_scores: Dict[str, StudentScoreIn] = Field(alias="studentScores")
  total_points: Any = Field(default=None, alias="totalPoints")  # checked by ScorePersistence
  upload_token: Optional[str] = Field(default=None, alias="uploadToken")
  generation_id: Optional[str] = Field(default=None, alias="generationId")

@router.post("/save", status_code=201)
def save_results(payload: SaveResults, db: Session = Depends(get_db)):
  records = [
    StudentScore(
      student_id=student_id, total_score=s.total_score, percentage=s.percentage,
      variant_code=s.variant_code or "",
      details=[AnswerDetail(question_id=d.question_id, answer=d.answer or "", is_correct=d.is_correct,
                            points=d.points) for d in s.details])
    for student_id, s in payload.student_scores.items()
  ]
  saved = ScorePersistence(db).save(payload.exam_id, payload.term_id, payload.course_id, records,
                                    payload.total_points, upload_token=payload.upload_token,
                                    generation_id=payload.generation_id)
  return saved.to_dict()
