"""Request bodies for the PaperSmith API.

The JSON API speaks camelCase; fields are snake_case in Python and
accept either spelling on input.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============== Auth ==============


class RegisterRequest(CamelModel):
    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(CamelModel):
    email: str
    password: str


# ============== Courses & Papers ==============


class CourseCreate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    level: Optional[str] = None
    board_or_university: Optional[str] = None
    language: Optional[str] = None


class PaperGenerateRequest(CamelModel):
    course_id: str
    exam_type: str
    total_marks: int
    duration_minutes: int
    topics_include: list[str] = []
    topics_exclude: list[str] = []
    difficulty_pref: Optional[Any] = None
    style_overrides: Optional[str] = None
    variant_count: int = 1
    seed: Optional[str] = None


# ============== Billing ==============


class CheckoutRequest(CamelModel):
    plan_id: str


class CancelRequest(CamelModel):
    subscription_id: Optional[str] = None


# ============== Admin ==============


class AdminCourseRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    credits: Optional[int] = None
    level: Optional[str] = None
    board_or_university: Optional[str] = None
    language: Optional[str] = None
    is_active: Optional[bool] = None


class MaterialRequest(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    course_id: Optional[str] = None
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    content: Optional[str] = None
    year: Optional[int] = None
    weightings: Optional[Any] = None
    style_notes: Optional[str] = None
    is_active: Optional[bool] = None


class PlanRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    tier: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    max_papers_per_month: Optional[int] = None
    max_variants: Optional[int] = None
    include_answers: bool = False
    features: list[str] = []
    is_active: bool = True


class TeamRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None


class TeamMemberRequest(CamelModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: str = "MEMBER"


class SettingsUpdate(CamelModel):
    section: Optional[str] = None
    data: Optional[dict[str, Any]] = None
