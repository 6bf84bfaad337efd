"""Shared fixtures: in-memory SQLite, a TestClient and user factories."""

import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["QDRANT_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="papersmith-uploads-")
os.environ.pop("VERCEL", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)

import pytest
from fastapi.testclient import TestClient

from api.auth import create_access_token, hash_password
from api.database.connection import SessionLocal, engine
from api.database.models import Base, Course, CourseEnrollment, CourseMaterial, Plan, User
from api.index import app
from api.rate_limit import limiter
from api.scripts.setup import seed_plans

limiter.enabled = False


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def plans(db):
    seed_plans(db)
    return {p.tier: p for p in db.query(Plan).all()}


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="STUDENT", plan=None, email=None, password="password123", name="Test User"):
        counter["n"] += 1
        user = User(
            name=name,
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(password),
            role=role,
            plan_id=plan.id if plan else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token(user.id, user.email, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_course(db):
    counter = {"n": 0}

    def _make(creator, name="Algorithms", is_active=True, enroll=()):
        counter["n"] += 1
        course = Course(
            name=name,
            description=f"{name} course",
            code=f"C{counter['n']:03d}",
            level="Undergraduate",
            board_or_university="Test University",
            created_by_id=creator.id,
            is_active=is_active,
        )
        db.add(course)
        db.flush()
        for user in enroll:
            db.add(CourseEnrollment(user_id=user.id, course_id=course.id))
        db.commit()
        db.refresh(course)
        return course

    return _make


@pytest.fixture
def make_material(db):
    def _make(course, title="Syllabus", type="SYLLABUS", file_url=None, content="Sorting and searching.", is_active=True):
        material = CourseMaterial(
            course_id=course.id,
            title=title,
            description=f"{title} description",
            type=type,
            file_url=file_url,
            content=content,
            is_active=is_active,
        )
        db.add(material)
        db.commit()
        db.refresh(material)
        return material

    return _make
