import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from examvariants.core.database import get_db
from examvariants.main import app
from examvariants.models.domain import Exam, ExamQuestion, QuestionType, Variant
from examvariants.models.orm import Base


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def two_question_exam():
    """Q1 multiple choice with correct answer "A", Q2 true/false with "True"."""
    return Exam(id="exam-1", title="Scenario", questions=[
        ExamQuestion(id="q1", type=QuestionType.MULTIPLE_CHOICE, correct_answer="A",
                     options=["Paris", "London", "Berlin", "Madrid"]),
        ExamQuestion(id="q2", type=QuestionType.TRUE_FALSE, correct_answer="True"),
    ])


@pytest.fixture
def mixed_exam():
    return Exam(id="exam-2", title="Mixed", questions=[
        ExamQuestion(id="m1", type=QuestionType.MULTIPLE_CHOICE, correct_answer="4", options=["3", "4", "5", "6"]),
        ExamQuestion(id="m2", type=QuestionType.MULTIPLE_CHOICE, correct_answer="Blue",
                     options=["Red", "Green", "Blue"], points=2.0),
        ExamQuestion(id="m3", type=QuestionType.TRUE_FALSE, correct_answer="False"),
        ExamQuestion(id="m4", type=QuestionType.MULTIPLE_CHOICE, correct_answer="C",
                     options=["Oxygen", "Helium", "Hydrogen", "Carbon"], negative_points=-0.5),
    ])


@pytest.fixture
def identity_variant():
    def make(exam, number=1, code=None):
        return Variant(id=f"v{number}", generation_id="g1", variant_number=number,
                       variant_code=code or chr(ord("A") + number - 1),
                       question_order=list(range(len(exam.questions))),
                       option_orders=[list(range(len(q.effective_options()))) for q in exam.questions])
    return make
