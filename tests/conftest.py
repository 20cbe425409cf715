import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-the-exam-engine")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from auth.security import create_access_token
from db.database import Base, build_engine, get_db
from db.models.memberships import MembershipGrant
from db.models.users import User
from exams.cermat_store import CermatSessionStore
from exams.config import BlockConfig, CermatConfig, EngineConfig
from exams.question_bank import import_assessment


@pytest.fixture
def engine():
    # one connection shared by the test and request sessions, so plain deferred BEGIN
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a file database built the way the application builds its engine."""
    engine = build_engine(f"sqlite:///{tmp_path / 'exams.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def cermat_store(monkeypatch):
    store = CermatSessionStore(idle_seconds=600)
    monkeypatch.setattr(main, "cermat_store", store)
    return store


@pytest.fixture
def client(session_factory, cermat_store):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_db] = override_get_db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def small_cermat_config():
    return EngineConfig(
        cermat=CermatConfig(total_sessions=2, questions_per_session=5, session_seconds=60, break_seconds=5),
    )


@pytest.fixture
def blocking_disabled_config():
    return EngineConfig(
        blocks=BlockConfig(practice_enabled=False, tryout_enabled=False, exam_enabled=False),
    )


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(role="student"):
        counter["n"] += 1
        user = User(username=f"user{counter['n']}", email=f"user{counter['n']}@example.com", role=role)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def learner(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def make_membership(db_session):
    def _make_membership(user, **overrides):
        values = {
            "user_id": user.id,
            "package_name": "Premium",
            "is_active": True,
            "allow_tryout": True,
            "allow_practice": True,
            "allow_cermat": True,
            "tryout_quota": 0,
            "tryout_used": 0,
            "practice_quota": 0,
            "practice_used": 0,
        }
        values.update(overrides)
        membership = MembershipGrant(**values)
        db_session.add(membership)
        db_session.commit()
        db_session.refresh(membership)
        return membership

    return _make_membership


def question_rows(count, options_per_question=4):
    """``count`` questions whose correct option is always the first one."""
    return [
        {
            "prompt": f"Question {i}",
            "explanation": f"Explanation {i}",
            "options": [
                {"label": f"Q{i} option {j}", "is_correct": j == 1}
                for j in range(1, options_per_question + 1)
            ],
        }
        for i in range(1, count + 1)
    ]


@pytest.fixture
def make_assessment(db_session):
    counter = {"n": 0}

    def _make_assessment(kind="TRYOUT", questions=5, **overrides):
        counter["n"] += 1
        payload = {
            "kind": kind,
            "title": f"{kind.title()} {counter['n']}",
            "slug": f"{kind.lower()}-{counter['n']}",
            "duration_minutes": 90,
            "is_free": False,
            "is_published": True,
            "questions": question_rows(questions),
        }
        payload.update(overrides)
        return import_assessment(db_session, payload)

    return _make_assessment


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        token = create_access_token({"sub": user.id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


def correct_answers(assessment, right):
    """Answer the first ``right`` questions correctly and the rest wrongly."""
    answers = []
    for index, question in enumerate(assessment.questions):
        correct = next(o for o in question.options if o.is_correct)
        wrong = next(o for o in question.options if not o.is_correct)
        answers.append((question.id, correct.id if index < right else wrong.id))
    return answers
