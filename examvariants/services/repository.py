"""
Loads and stores domain objects through the ORM.
"""
import logging
from typing import List, Optional, Set, Dict, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examvariants.core.errors import NotFoundError, PersistenceError, PreconditionError
from examvariants.models import orm
from examvariants.models.domain import (
    AnswerDetail,
    Exam,
    ExamQuestion,
    GenerationStatus,
    QuestionType,
    StudentScore,
    Variant,
)
from examvariants.services.variants import GenerationPlan

logger = logging.getLogger(__name__)


# ---- conversion ---------------------------------------------------------

def exam_to_domain(row: orm.Exam) -> Exam:
    return Exam(
        id=row.id,
        title=row.title,
        questions=[
            ExamQuestion(id=q.id, type=QuestionType(q.question_type), correct_answer=q.correct_answer,
                         options=list(q.options or []), points=q.points, negative_points=q.negative_points,
                         text=q.text, difficulty=q.difficulty, topic=q.topic)
            for q in row.questions
        ],
    )


def variant_to_domain(row: orm.ExamVariant) -> Variant:
    return Variant(id=row.id, generation_id=row.generation_id, variant_number=row.variant_number,
                   variant_code=row.variant_code, question_order=[int(i) for i in row.question_order],
                   option_orders=[[int(i) for i in order] for order in row.option_orders])


def result_to_domain(row: orm.ExamResult) -> StudentScore:
    return StudentScore(
        student_id=row.student_id,
        total_score=row.score,
        percentage=row.percentage,
        variant_code=row.variant_code,
        details=[AnswerDetail(question_id=a.question_id, answer=a.student_answer,
                              is_correct=a.is_correct, points=a.points)
                 for a in row.student_answers],
    )


# ---- exams --------------------------------------------------------------

def create_exam(db: Session, exam: Exam, course_id: Optional[str] = None, term_id: Optional[str] = None,
                roster: Optional[List[Dict[str, Any]]] = None) -> orm.Exam:
    if db.get(orm.Exam, exam.id) is not None:
        raise PreconditionError(f"Exam {exam.id} already exists")
    row = orm.Exam(id=exam.id, title=exam.title, course_id=course_id, term_id=term_id)
    for position, q in enumerate(exam.questions):
        row.questions.append(orm.ExamQuestion(
            id=q.id, position=position, question_type=q.type.value, text=q.text, options=list(q.options),
            correct_answer=q.correct_answer, points=q.points, negative_points=q.negative_points,
            difficulty=q.difficulty, topic=q.topic))
    db.add(row)
    if roster and course_id and term_id:
        for student in roster:
            db.add(orm.Enrollment(course_id=course_id, term_id=term_id,
                                  student_id=str(student["student_id"]), name=student.get("name")))
    _commit(db, f"create exam {exam.id}")
    db.refresh(row)
    return row


def get_exam(db: Session, exam_id: str) -> orm.Exam:
    row = db.get(orm.Exam, exam_id)
    if row is None:
        raise NotFoundError(f"Exam {exam_id} not found")
    return row


def load_exam(db: Session, exam_id: str) -> Exam:
    return exam_to_domain(get_exam(db, exam_id))


def load_roster(db: Session, course_id: Optional[str], term_id: Optional[str]) -> Set[str]:
    if not course_id or not term_id:
        return set()
    stmt = select(orm.Enrollment.student_id).where(orm.Enrollment.course_id == course_id,
                                                   orm.Enrollment.term_id == term_id)
    return set(db.scalars(stmt).all())


def load_display_names(db: Session, course_id: Optional[str], term_id: Optional[str]) -> Dict[str, str]:
    if not course_id or not term_id:
        return {}
    stmt = select(orm.Enrollment).where(orm.Enrollment.course_id == course_id, orm.Enrollment.term_id == term_id)
    return {e.student_id: e.name for e in db.scalars(stmt) if e.name}


# ---- generations --------------------------------------------------------

def save_generation(db: Session, plan: GenerationPlan) -> orm.ExamGeneration:
    """
    Store a generation and its variants.

    The generation row is committed PENDING first; the variants and the
    COMPLETED status are then written in one commit. If that commit fails the
    row is kept as FAILED with no variants and ``PersistenceError`` is raised.
    """
    cfg = plan.config
    row = orm.ExamGeneration(
        id=plan.generation_id, exam_id=plan.exam_id, number_of_variants=cfg.number_of_variants,
        randomize_question_order=cfg.randomize_question_order, randomize_option_order=cfg.randomize_option_order,
        randomize_true_false=cfg.randomize_true_false, seed=cfg.seed,
        status=GenerationStatus.PENDING.value, generated_at=orm.utcnow())
    db.add(row)
    _commit(db, f"save generation {plan.generation_id}")

    for v in plan.variants:
        row.variants.append(orm.ExamVariant(
            id=v.id, exam_id=plan.exam_id, variant_number=v.variant_number, variant_code=v.variant_code,
            question_order=list(v.question_order), option_orders=[list(o) for o in v.option_orders]))
    row.status = GenerationStatus.COMPLETED.value
    row.completed_at = orm.utcnow()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to store variants of generation %s: %s", plan.generation_id, exc)
        row.status = GenerationStatus.FAILED.value
        row.completed_at = orm.utcnow()
        _commit(db, f"mark generation {plan.generation_id} failed")
        raise PersistenceError(f"Failed to save generation {plan.generation_id}", cause=exc) from exc
    db.refresh(row)
    return row


def get_generation(db: Session, generation_id: str) -> orm.ExamGeneration:
    row = db.get(orm.ExamGeneration, generation_id)
    if row is None:
        raise NotFoundError(f"Exam generation {generation_id} not found")
    return row


def load_variants(db: Session, generation_id: str) -> List[Variant]:
    return [variant_to_domain(v) for v in get_generation(db, generation_id).variants]


# ---- results ------------------------------------------------------------

def load_results(db: Session, exam_id: str, generation_id: Optional[str] = None,
                 latest_only: bool = True) -> List[StudentScore]:
    """
    Stored results of an exam, restricted to one generation when
    ``generation_id`` is given; with ``latest_only`` a re-uploaded student
    keeps only the newest one.
    """
    stmt = select(orm.ExamResult).where(orm.ExamResult.exam_id == exam_id)
    if generation_id is not None:
        stmt = stmt.where(orm.ExamResult.generation_id == generation_id)
    records = [result_to_domain(r) for r in db.scalars(stmt.order_by(orm.ExamResult.created_at))]
    if not latest_only:
        return records
    latest = {}
    for r in records:
        latest.pop(r.student_id, None)
        latest[r.student_id] = r
    return list(latest.values())


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to %s: %s", what, exc)
        raise PersistenceError(f"Failed to {what}", cause=exc) from exc
