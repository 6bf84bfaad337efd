"""Database package for PaperSmith."""

from .models import (
    Base,
    ROLES,
    PLAN_TIERS,
    MATERIAL_TYPES,
    User,
    Plan,
    Course,
    CourseEnrollment,
    CourseMaterial,
    Team,
    TeamMember,
    PaperRequest,
    PaperVariant,
    PaperSubmission,
    GradingResult,
    StripeSubscription,
    SystemSetting,
)
from .connection import (
    init_database,
    get_db,
    get_db_dependency,
    SessionLocal,
    engine,
)

__all__ = [
    "Base",
    "ROLES",
    "PLAN_TIERS",
    "MATERIAL_TYPES",
    "User",
    "Plan",
    "Course",
    "CourseEnrollment",
    "CourseMaterial",
    "Team",
    "TeamMember",
    "PaperRequest",
    "PaperVariant",
    "PaperSubmission",
    "GradingResult",
    "StripeSubscription",
    "SystemSetting",
    "init_database",
    "get_db",
    "get_db_dependency",
    "SessionLocal",
    "engine",
]
