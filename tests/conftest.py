import os

# Point the app at SQLite before medipublish.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from medipublish.database import get_db, init_db
from medipublish.models.activity import CMEActivity, STATUS_PUBLISHED
from medipublish.scripts.init_db import ensure_specialty_requirements
from medipublish.services.export import FileExportStore


def make_questions(n: int):
    return [
        {
            "id": f"q{i + 1}",
            "question": f"Question {i + 1}?",
            "options": ["A", "B", "C", "D"],
            "correct_answer": i % 4,
            "explanation": "",
        }
        for i in range(n)
    ]


def correct_answers(n: int):
    return [i % 4 for i in range(n)]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_requirements(db):
    ensure_specialty_requirements(db)
    return db


@pytest.fixture
def make_activity(db):
    """Insert a published activity straight into the database."""
    counter = {"n": 0}

    def _make(**overrides) -> CMEActivity:
        counter["n"] += 1
        now = datetime.now(timezone.utc)
        n_questions = overrides.pop("n_questions", 10)
        fields = dict(
            creator_id="creator-1",
            title=f"Activity number {counter['n']}",
            description="",
            specialty="Internal Medicine",
            tags=["Internal Medicine"],
            credit_type="AMA_PRA_1",
            credit_hours=Decimal("2.00"),
            learning_objectives=["one", "two", "three"],
            accreditation_statement="Accredited",
            faculty_disclosures=[],
            question_bank=make_questions(n_questions),
            passing_score=70,
            attempts_allowed=3,
            time_limit=120,
            status=STATUS_PUBLISHED,
            release_date=now,
            expiration_date=now + timedelta(days=365),
            published_at=now + timedelta(seconds=counter["n"]),
            created_at=now,
        )
        fields.update(overrides)
        activity = CMEActivity(**fields)
        db.add(activity)
        db.commit()
        db.refresh(activity)
        return activity

    return _make


@pytest.fixture
def export_store(tmp_path):
    return FileExportStore(str(tmp_path / "exports"))


@pytest.fixture
def client(session_factory, export_store):
    from medipublish.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    original_store = app.state.export_store
    app.state.export_store = export_store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        app.state.export_store = original_store
