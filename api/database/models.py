"""SQLAlchemy models for PaperSmith.

The relational store is the source of truth for accounts, plans, courses,
course materials and the paper lifecycle:

- Users belong to a role (STUDENT, TEAM, SUPER_ADMIN) and optionally a Plan
- Courses own CourseMaterials (syllabi, old papers, references) whose text
  is chunked into the Qdrant collection for retrieval
- PaperRequest -> PaperVariant -> PaperSubmission -> GradingResult tracks a
  generated paper from request to automated grade
- StripeSubscription mirrors the billing state reported by Stripe webhooks
"""

from datetime import datetime
import uuid
from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    DateTime,
    JSON,
    ForeignKey,
    Text,
    Boolean,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ROLES = ("STUDENT", "TEAM", "SUPER_ADMIN")
PLAN_TIERS = ("FREE", "MEDIUM", "PRO")
MATERIAL_TYPES = ("SYLLABUS", "OLD_PAPER", "REFERENCE")


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid.uuid4())


class User(Base):
    """Account with a role and an optional subscription plan."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="STUDENT")  # STUDENT, TEAM, SUPER_ADMIN
    is_active = Column(Boolean, default=True)

    plan_id = Column(String(36), ForeignKey("plans.id"), nullable=True, index=True)
    stripe_customer_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = relationship("Plan", back_populates="users")
    enrollments = relationship("CourseEnrollment", back_populates="user", cascade="all, delete-orphan")
    paper_requests = relationship("PaperRequest", back_populates="user")
    submissions = relationship("PaperSubmission", back_populates="user")
    memberships = relationship("TeamMember", back_populates="user", cascade="all, delete-orphan")


class Plan(Base):
    """Subscription plan gating paper quota, variants and answer keys."""

    __tablename__ = "plans"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    tier = Column(String(20), nullable=False)  # FREE, MEDIUM, PRO
    price = Column(Float, nullable=False, default=0.0)
    currency = Column(String(10), default="USD")

    # -1 means unlimited
    max_papers_per_month = Column(Integer, nullable=False, default=1)
    max_variants = Column(Integer, nullable=False, default=1)
    include_answers = Column(Boolean, default=False)
    features = Column(JSON, default=list)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    users = relationship("User", back_populates="plan")

    @property
    def is_unlimited(self) -> bool:
        return self.max_papers_per_month is not None and self.max_papers_per_month < 0


# ============== Courses ==============


class Course(Base):
    """A course that papers are generated for."""

    __tablename__ = "courses"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    code = Column(String(50), unique=True, nullable=False)
    credits = Column(Integer, default=3)
    level = Column(String(100), nullable=True)
    board_or_university = Column(String(200), nullable=True)
    language = Column(String(50), default="English")
    is_active = Column(Boolean, default=True)

    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    created_by = relationship("User")
    materials = relationship("CourseMaterial", back_populates="course")
    enrollments = relationship("CourseEnrollment", back_populates="course")
    paper_requests = relationship("PaperRequest", back_populates="course")


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True)
    enrolled_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="enrollments")
    course = relationship("Course", back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="enrollment_user_course_unique"),
    )


class CourseMaterial(Base):
    """Syllabus, old paper or reference material attached to a course.

    The extracted text lives in `content`; its chunks are stored in the
    Qdrant collection with `materialId` in the payload.
    """

    __tablename__ = "course_materials"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True)

    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)  # SYLLABUS, OLD_PAPER, REFERENCE
    file_url = Column(String(500), nullable=True)
    file_size = Column(Integer, default=0)
    content = Column(Text, nullable=True)
    year = Column(Integer, nullable=True)
    weightings = Column(JSON, nullable=True)
    style_notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    # Vector indexing status
    index_status = Column(String(20), default="pending")  # pending, indexed, failed, skipped
    chunks_count = Column(Integer, nullable=True)
    index_error = Column(Text, nullable=True)

    uploaded_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    course = relationship("Course", back_populates="materials")
    uploaded_by = relationship("User")

    __table_args__ = (Index("ix_material_course_type", "course_id", "type"),)


# ============== Teams ==============


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    created_by = relationship("User")
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(50), default="MEMBER")
    joined_at = Column(DateTime, default=datetime.utcnow)

    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="team_member_unique"),
    )


# ============== Papers ==============


class PaperRequest(Base):
    """A user's request for a generated exam paper."""

    __tablename__ = "paper_requests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True)

    exam_type = Column(String(100), nullable=False)
    total_marks = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    topics_include = Column(JSON, default=list)
    topics_exclude = Column(JSON, default=list)
    difficulty_pref = Column(JSON, nullable=True)
    style_overrides = Column(Text, nullable=True)

    status = Column(String(20), default="GENERATED")
    seed = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="paper_requests")
    course = relationship("Course", back_populates="paper_requests")
    variants = relationship("PaperVariant", back_populates="paper_request", cascade="all, delete-orphan")


class PaperVariant(Base):
    __tablename__ = "paper_variants"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    paper_request_id = Column(String(36), ForeignKey("paper_requests.id"), nullable=False, index=True)
    variant_id = Column(String(50), nullable=False)

    # Generated paper JSON (sections, questions, style_alignment...)
    paper_data = Column(JSON, nullable=False, default=dict)
    marking_scheme = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    paper_request = relationship("PaperRequest", back_populates="variants")
    submissions = relationship("PaperSubmission", back_populates="paper_variant")


class PaperSubmission(Base):
    """A student's uploaded answer script for a paper variant."""

    __tablename__ = "paper_submissions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    paper_variant_id = Column(String(36), ForeignKey("paper_variants.id"), nullable=False, index=True)

    submitted_file = Column(String(500), nullable=True)
    extracted_answers = Column(JSON, default=list)
    status = Column(String(20), default="SUBMITTED")  # SUBMITTED, GRADED
    submitted_at = Column(DateTime, default=datetime.utcnow)
    graded_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="submissions")
    paper_variant = relationship("PaperVariant", back_populates="submissions")
    grading = relationship("GradingResult", back_populates="submission", uselist=False, cascade="all, delete-orphan")


class GradingResult(Base):
    __tablename__ = "grading_results"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    submission_id = Column(String(36), ForeignKey("paper_submissions.id"), nullable=False, unique=True)

    total_score = Column(Float, default=0.0)
    max_score = Column(Float, default=0.0)
    percentage = Column(Float, default=0.0)
    grade = Column(String(10), nullable=True)
    marks_breakdown = Column(JSON, default=list)
    feedback = Column(JSON, nullable=True)
    auto_graded = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    submission = relationship("PaperSubmission", back_populates="grading")


# ============== Billing ==============


class StripeSubscription(Base):
    """Local mirror of a Stripe subscription."""

    __tablename__ = "stripe_subscriptions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("plans.id"), nullable=True)

    stripe_subscription_id = Column(String(100), unique=True, nullable=True)
    stripe_customer_id = Column(String(100), nullable=True)
    status = Column(String(30), default="active")  # active, past_due, canceled, ...
    amount = Column(Float, default=0.0)
    currency = Column(String(10), default="USD")
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    plan = relationship("Plan")


class SystemSetting(Base):
    """One row per admin settings section, overriding the defaults."""

    __tablename__ = "system_settings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    section = Column(String(50), unique=True, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
