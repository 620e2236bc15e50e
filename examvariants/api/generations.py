from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from examvariants.core.database import get_db
from examvariants.core.errors import ValidationError
from examvariants.api.exams import GenerationOut, generation_out
from examvariants.services import repository
from examvariants.services.answer_key import answer_key
from examvariants.services.ingestion import ResultIngestor, UploadContext
from examvariants.services.persistence import ScorePersistence
from examvariants.services.variants import validate_uniqueness

router = APIRouter()

class KeyEntry(BaseModel):
  position: int
  questionId: str
  correctAnswer: str
  canonicalAnswer: str
  points: float

class VariantDetail(BaseModel):
  id: str
  variantNumber: int
  variantCode: str
  questionOrder: List[int]
  optionOrders: List[List[int]]
  answerKey: List[KeyEntry]

class GenerationDetail(GenerationOut):
  variantDetails: List[VariantDetail]
  uniqueness: Dict[str, Any]

def _read_upload(file: UploadFile) -> str:
  try:
    return file.file.read().decode("utf-8-sig")
  except UnicodeDecodeError:
    raise ValidationError("Uploaded file is not UTF-8 text", "header", "bad_encoding") from None

def _context(db: Session, generation_id: str):
  gen = repository.get_generation(db, generation_id)
  exam_row = repository.get_exam(db, gen.exam_id)
  ctx = UploadContext(
    exam=repository.exam_to_domain(exam_row),
    variants=[repository.variant_to_domain(v) for v in gen.variants],
    roster=repository.load_roster(db, exam_row.course_id, exam_row.term_id))
  return exam_row, ctx

@router.get("/{generation_id}", response_model=GenerationDetail)
def get_generation(generation_id: str, db: Session = Depends(get_db)):
  gen = repository.get_generation(db, generation_id)
  exam = repository.load_exam(db, gen.exam_id)
  variants = [repository.variant_to_domain(v) for v in gen.variants]
  details = [
    VariantDetail(
      id=v.id, variantNumber=v.variant_number, variantCode=v.variant_code,
      questionOrder=v.question_order, optionOrders=v.option_orders,
      answerKey=[KeyEntry(position=e.position, questionId=e.question_id, correctAnswer=e.correct_answer,
                          canonicalAnswer=e.canonical_answer, points=e.points) for e in answer_key(exam, v)])
    for v in variants
  ]
  base = generation_out(gen)
  return GenerationDetail(**base.model_dump(), variantDetails=details, uniqueness=validate_uniqueness(variants))

@router.post("/{generation_id}/results/preview")
def preview_results(generation_id: str, file: UploadFile = File(...), db: Session = Depends(get_db)):
  _, ctx = _context(db, generation_id)
  return ResultIngestor(ctx).check(_read_upload(file)).to_dict()

@router.post("/{generation_id}/results", status_code=201)
def upload_results(generation_id: str, file: UploadFile = File(...),
                   upload_token: Optional[str] = Form(default=None, alias="uploadToken"),
                   db: Session = Depends(get_db)):
  exam_row, ctx = _context(db, generation_id)
  records = ResultIngestor(ctx).ingest(_read_upload(file))
  saved = ScorePersistence(db).save(exam_row.id, exam_row.term_id, exam_row.course_id, records,
                                    ctx.exam.total_points, upload_token=upload_token,
                                    generation_id=generation_id)
  return saved.to_dict()
