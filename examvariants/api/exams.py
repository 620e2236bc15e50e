from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from uuid import uuid4
from sqlalchemy.orm import Session
from examvariants.core.database import get_db
from examvariants.models.domain import Exam, ExamQuestion, QuestionType, VariantConfig
from examvariants.services import repository
from examvariants.services.variants import VariantGenerator

router = APIRouter()

class QuestionIn(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  id: Optional[str] = None
  type: Literal["MULTIPLE_CHOICE", "TRUE_FALSE"] = "MULTIPLE_CHOICE"
  text: str = ""
  options: List[str] = []
  correct_answer: str = Field(alias="correctAnswer")
  points: float = Field(default=1.0, ge=0)
  negative_points: Optional[float] = Field(default=None, alias="negativePoints", le=0)
  difficulty: Optional[str] = None
  topic: Optional[str] = None

class StudentIn(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  student_id: str = Field(alias="studentId")
  name: Optional[str] = None

class ExamCreate(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  id: Optional[str] = None
  title: str = ""
  course_id: Optional[str] = Field(default=None, alias="courseId")
  term_id: Optional[str] = Field(default=None, alias="termId")
  questions: List[QuestionIn]
  roster: List[StudentIn] = []

class ExamOut(BaseModel):
  id: str
  title: str
  courseId: Optional[str]
  termId: Optional[str]
  totalPoints: float
  questionIds: List[str]

class GenerateVariants(BaseModel):
  model_config = ConfigDict(populate_by_name=True)
  number_of_variants: int = Field(default=1, ge=1, alias="numberOfVariants")
  randomize_question_order: bool = Field(default=True, alias="randomizeQuestionOrder")
  randomize_option_order: bool = Field(default=True, alias="randomizeOptionOrder")
  randomize_true_false: bool = Field(default=False, alias="randomizeTrueFalse")
  seed: Optional[str] = None

class VariantRef(BaseModel):
  id: str
  variantNumber: int
  variantCode: str

class GenerationOut(BaseModel):
  id: str
  examId: str
  status: str
  numberOfVariants: int
  generatedAt: datetime
  completedAt: Optional[datetime]
  variants: List[VariantRef]
  statistics: Dict[str, Any] = {}

def _exam_out(row) -> ExamOut:
  exam = repository.exam_to_domain(row)
  return ExamOut(id=row.id, title=row.title, courseId=row.course_id, termId=row.term_id,
                 totalPoints=exam.total_points, questionIds=[q.id for q in exam.questions])

def generation_out(row, statistics: Optional[Dict[str, Any]] = None) -> GenerationOut:
  return GenerationOut(
    id=row.id, examId=row.exam_id, status=row.status, numberOfVariants=row.number_of_variants,
    generatedAt=row.generated_at, completedAt=row.completed_at,
    variants=[VariantRef(id=v.id, variantNumber=v.variant_number, variantCode=v.variant_code) for v in row.variants],
    statistics=statistics or {})

@router.post("", response_model=ExamOut, status_code=201)
def create_exam(payload: ExamCreate, db: Session = Depends(get_db)):
  exam_id = payload.id or str(uuid4())
  questions = [
    ExamQuestion(id=q.id or f"{exam_id}-q{i + 1}", type=QuestionType(q.type), correct_answer=q.correct_answer,
                 options=q.options, points=q.points, negative_points=q.negative_points, text=q.text,
                 difficulty=q.difficulty, topic=q.topic)
    for i, q in enumerate(payload.questions)
  ]
  roster = [{"student_id": s.student_id, "name": s.name} for s in payload.roster]
  row = repository.create_exam(db, Exam(id=exam_id, title=payload.title, questions=questions),
                               course_id=payload.course_id, term_id=payload.term_id, roster=roster)
  return _exam_out(row)

@router.get("/{exam_id}", response_model=ExamOut)
def get_exam(exam_id: str, db: Session = Depends(get_db)):
  return _exam_out(repository.get_exam(db, exam_id))

@router.post("/{exam_id}/generations", response_model=GenerationOut, status_code=201)
def generate_variants(exam_id: str, payload: GenerateVariants, db: Session = Depends(get_db)):
  exam = repository.load_exam(db, exam_id)
  config = VariantConfig(
    number_of_variants=payload.number_of_variants,
    randomize_question_order=payload.randomize_question_order,
    randomize_option_order=payload.randomize_option_order,
    randomize_true_false=payload.randomize_true_false,
    seed=payload.seed)
  plan = VariantGenerator().generate(exam, config)
  row = repository.save_generation(db, plan)
  return generation_out(row, plan.statistics)
