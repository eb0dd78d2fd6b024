"""Pytest configuration and shared fixtures."""

import os

# Must be set before the application modules read their settings
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-jwt-signing-only")

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

import examdesk.models  # noqa: F401
from examdesk.core.security import create_access_token
from examdesk.db.base import Base
from examdesk.db.engine import create_db_engine
from examdesk.db.session import get_db
from examdesk.main import app
from examdesk.models.exam import Exam
from examdesk.models.user import User, UserRole
from tests.helpers.seed import create_exam_with_questions, create_test_user

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine: Engine) -> Generator[Session, None, None]:
    """Database session shared by the test body and the app under test."""
    session = Session(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def override_db(db: Session) -> Generator[None, None, None]:
    """Route the app's get_db dependency to the test session."""

    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close the session, it's managed by the db fixture

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(override_db) -> TestClient:
    """FastAPI test client with database dependency override."""
    return TestClient(app)


@pytest.fixture
def learner(db: Session) -> User:
    user = create_test_user(db, role=UserRole.USER, full_name="Test Learner")
    db.commit()
    return user


@pytest.fixture
def other_learner(db: Session) -> User:
    user = create_test_user(db, role=UserRole.USER, full_name="Other Learner")
    db.commit()
    return user


@pytest.fixture
def coordinator(db: Session) -> User:
    user = create_test_user(db, role=UserRole.COORDINATOR)
    db.commit()
    return user


@pytest.fixture
def admin(db: Session) -> User:
    user = create_test_user(db, role=UserRole.ADMIN, full_name="Test Admin")
    db.commit()
    return user


def _headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}


@pytest.fixture
def auth_headers_learner(learner: User) -> dict[str, str]:
    return _headers(learner)


@pytest.fixture
def auth_headers_other(other_learner: User) -> dict[str, str]:
    return _headers(other_learner)


@pytest.fixture
def auth_headers_coordinator(coordinator: User) -> dict[str, str]:
    return _headers(coordinator)


@pytest.fixture
def auth_headers_admin(admin: User) -> dict[str, str]:
    return _headers(admin)


@pytest.fixture
def mcq_exam(db: Session, admin: User) -> Exam:
    """Active 60-minute exam: three mcq questions worth 2, 3 and 5 marks."""
    exam = create_exam_with_questions(
        db,
        admin,
        questions=[
            ("mcq", 2, ["A", "B", "C"], "A"),
            ("mcq", 3, ["A", "B", "C"], "B"),
            ("mcq", 5, ["A", "B", "C"], "C"),
        ],
    )
    db.commit()
    return exam


@pytest.fixture
def mixed_exam(db: Session, admin: User) -> Exam:
    """Active exam with one mcq (4 marks), one truefalse (1 mark) and one text (5 marks)."""
    exam = create_exam_with_questions(
        db,
        admin,
        questions=[
            ("mcq", 4, ["red", "green"], "green"),
            ("truefalse", 1, None, "true"),
            ("text", 5, None, None),
        ],
        total_marks=10,
        passing_marks=5,
    )
    db.commit()
    return exam
