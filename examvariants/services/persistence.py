import math
import uuid
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from examvariants.core.errors import NotFoundError, PersistenceError, PreconditionError
from examvariants.models import orm
from examvariants.models.domain import StudentScore

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    batch_id: str
    saved_results: List[Dict[str, Any]] = field(default_factory=list)
    replayed: bool = False

    @property
    def count(self) -> int:
        return len(self.saved_results)

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "savedResults": self.saved_results,
                "batchId": self.batch_id, "replayed": self.replayed}


def _summary(result: orm.ExamResult) -> Dict[str, Any]:
    return {"id": result.id, "studentId": result.student_id, "score": result.score,
            "totalPoints": result.total_points, "variantCode": result.variant_code}


class ScorePersistence:
    """Writes a batch of scored students in a single transaction."""

    def __init__(self, db: Session):
        self.db = db

    def save(self, exam_id: str, term_id: Optional[str], course_id: Optional[str],
             student_scores: List[StudentScore], total_points: float,
             upload_token: Optional[str] = None, generation_id: Optional[str] = None) -> SaveResult:
        self._check_preconditions(exam_id, student_scores, total_points, generation_id)

        if upload_token:
            previous = self._find_batch(upload_token)
            if previous is not None:
                logger.info("Upload token %s already committed as batch %s", upload_token, previous.batch_id)
                return previous

        batch = orm.ResultBatch(id=str(uuid.uuid4()), exam_id=exam_id, generation_id=generation_id,
                                upload_token=upload_token or None)
        for record in student_scores:
            batch.results.append(orm.ExamResult(
                id=str(uuid.uuid4()),
                student_id=record.student_id,
                exam_id=exam_id,
                generation_id=generation_id,
                term_id=term_id,
                course_id=course_id,
                variant_code=record.variant_code,
                score=float(record.total_score),
                total_points=float(total_points),
                percentage=float(record.percentage),
                student_answers=[
                    orm.StudentAnswer(question_id=d.question_id, student_answer=d.answer or "",
                                      is_correct=bool(d.is_correct), points=float(d.points))
                    for d in record.details
                ],
            ))

        try:
            self.db.add(batch)
            self.db.flush()
            saved = [_summary(r) for r in batch.results]
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            # lost a race on the same upload token: report the winner
            if upload_token:
                previous = self._find_batch(upload_token)
                if previous is not None:
                    return previous
            logger.error("Saving results for exam %s failed: %s", exam_id, exc)
            raise PersistenceError(f"Failed to save exam results: {exc.orig}", cause=exc) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Saving results for exam %s failed: %s", exam_id, exc)
            raise PersistenceError(f"Failed to save exam results: {exc}", cause=exc) from exc

        logger.info("Saved %d results for exam %s in batch %s", len(saved), exam_id, batch.id)
        return SaveResult(batch_id=batch.id, saved_results=saved)

    def _check_preconditions(self, exam_id: str, student_scores: List[StudentScore], total_points,
                             generation_id: Optional[str] = None) -> None:
        if isinstance(total_points, bool) or not isinstance(total_points, (int, float)) \
                or math.isnan(total_points) or total_points <= 0:
            raise PreconditionError("totalPoints must be a positive number")
        if not student_scores:
            raise PreconditionError("No student scores to save")

        exam = self.db.get(orm.Exam, exam_id)
        if exam is None:
            raise NotFoundError(f"Exam {exam_id} not found")
        question_ids = {q.id for q in exam.questions}
        exam_points = sum(q.points for q in exam.questions)
        if not math.isclose(total_points, exam_points, abs_tol=1e-9):
            raise PreconditionError(
                f"totalPoints {total_points:g} does not match the exam's total of {exam_points:g}")

        variant_codes = None
        if generation_id is not None:
            generation = self.db.get(orm.ExamGeneration, generation_id)
            if generation is None or generation.exam_id != exam_id:
                raise PreconditionError(f"Generation {generation_id} does not belong to exam {exam_id}")
            variant_codes = {v.variant_code for v in generation.variants}

        for record in student_scores:
            if not (record.variant_code or "").strip():
                raise PreconditionError(f"student {record.student_id}'s variantCode missing")
            if variant_codes is not None and record.variant_code not in variant_codes:
                raise PreconditionError(
                    f"student {record.student_id}'s variantCode {record.variant_code} is not a variant of "
                    f"generation {generation_id}")
            unknown = [d.question_id for d in record.details if d.question_id not in question_ids]
            if unknown:
                raise PreconditionError(
                    f"student {record.student_id} answers unknown questions: {', '.join(unknown)}")
            if record.details and not math.isclose(sum(d.points for d in record.details),
                                                   record.total_score, abs_tol=1e-9):
                raise PreconditionError(
                    f"student {record.student_id}'s totalScore does not equal the sum of answer points")

    def _find_batch(self, upload_token: str) -> Optional[SaveResult]:
        batch = self.db.scalar(select(orm.ResultBatch).where(orm.ResultBatch.upload_token == upload_token))
        if batch is None:
            return None
        return SaveResult(batch_id=batch.id, saved_results=[_summary(r) for r in batch.results], replayed=True)
