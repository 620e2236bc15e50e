from datetime import datetime, timezone
from typing import List
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, ForeignKey, JSON, Float, DateTime, UniqueConstraint

class Base(DeclarativeBase): pass

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Exam(Base):
    __tablename__ = "exams"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    course_id: Mapped[str | None] = mapped_column(String, nullable=True)
    term_id: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str] = mapped_column(String, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    questions: Mapped[List["ExamQuestion"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", order_by="ExamQuestion.position")

class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (UniqueConstraint("exam_id", "position", name="uq_exam_question_position"),)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    exam_id: Mapped[str] = mapped_column(String, ForeignKey("exams.id"))
    position: Mapped[int] = mapped_column(Integer)
    question_type: Mapped[str] = mapped_column(String)
    text: Mapped[str] = mapped_column(Text, default="")
    options: Mapped[list] = mapped_column(JSON, default=list)
    correct_answer: Mapped[str] = mapped_column(String)
    points: Mapped[float] = mapped_column(Float, default=1.0)
    negative_points: Mapped[float | None] = mapped_column(Float, nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String, nullable=True)
    topic: Mapped[str | None] = mapped_column(String, nullable=True)
    exam: Mapped["Exam"] = relationship(back_populates="questions")

class ExamGeneration(Base):
    __tablename__ = "exam_generations"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    exam_id: Mapped[str] = mapped_column(String, ForeignKey("exams.id"))
    number_of_variants: Mapped[int] = mapped_column(Integer)
    randomize_question_order: Mapped[bool] = mapped_column(Boolean, default=True)
    randomize_option_order: Mapped[bool] = mapped_column(Boolean, default=True)
    randomize_true_false: Mapped[bool] = mapped_column(Boolean, default=False)
    seed: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="PENDING")  # GenerationStatus
    generated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    variants: Mapped[List["ExamVariant"]] = relationship(
        back_populates="generation", cascade="all, delete-orphan", order_by="ExamVariant.variant_number")

class ExamVariant(Base):
    __tablename__ = "exam_variants"
    __table_args__ = (UniqueConstraint("generation_id", "variant_number", name="uq_generation_variant_number"),)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    generation_id: Mapped[str] = mapped_column(String, ForeignKey("exam_generations.id"))
    exam_id: Mapped[str] = mapped_column(String, ForeignKey("exams.id"))
    variant_number: Mapped[int] = mapped_column(Integer)
    variant_code: Mapped[str] = mapped_column(String)
    question_order: Mapped[list] = mapped_column(JSON)   # list[int]
    option_orders: Mapped[list] = mapped_column(JSON)    # list[list[int]], by canonical question
    generation: Mapped["ExamGeneration"] = relationship(back_populates="variants")

class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("course_id", "term_id", "student_id", name="uq_enrollment"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[str] = mapped_column(String)
    term_id: Mapped[str] = mapped_column(String)
    student_id: Mapped[str] = mapped_column(String)
    name: Mapped[str | None] = mapped_column(String, nullable=True)

class ResultBatch(Base):
    __tablename__ = "result_batches"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    exam_id: Mapped[str] = mapped_column(String, ForeignKey("exams.id"))
    generation_id: Mapped[str | None] = mapped_column(String, ForeignKey("exam_generations.id"), nullable=True)
    upload_token: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    results: Mapped[List["ExamResult"]] = relationship(back_populates="batch")

class ExamResult(Base):
    __tablename__ = "exam_results"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    batch_id: Mapped[str] = mapped_column(String, ForeignKey("result_batches.id"))
    student_id: Mapped[str] = mapped_column(String)
    exam_id: Mapped[str] = mapped_column(String, ForeignKey("exams.id"))
    generation_id: Mapped[str | None] = mapped_column(String, ForeignKey("exam_generations.id"), nullable=True, index=True)
    term_id: Mapped[str | None] = mapped_column(String, nullable=True)
    course_id: Mapped[str | None] = mapped_column(String, nullable=True)
    variant_code: Mapped[str] = mapped_column(String)
    score: Mapped[float] = mapped_column(Float)
    total_points: Mapped[float] = mapped_column(Float)
    percentage: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    batch: Mapped["ResultBatch"] = relationship(back_populates="results")
    student_answers: Mapped[List["StudentAnswer"]] = relationship(
        back_populates="exam_result", cascade="all, delete-orphan")

class StudentAnswer(Base):
    __tablename__ = "student_answers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exam_result_id: Mapped[str] = mapped_column(String, ForeignKey("exam_results.id"))
    question_id: Mapped[str] = mapped_column(String)
    student_answer: Mapped[str] = mapped_column(String, default="")
    is_correct: Mapped[bool] = mapped_column(Boolean)
    points: Mapped[float] = mapped_column(Float)
    exam_result: Mapped["ExamResult"] = relationship(back_populates="student_answers")
