"""camelCase JSON views of the ORM models."""

from datetime import datetime
from typing import Any, Optional

from .database.models import (
    Course,
    CourseMaterial,
    GradingResult,
    PaperRequest,
    PaperSubmission,
    PaperVariant,
    Plan,
    Team,
    User,
)


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_summary(user: Optional[User]) -> Optional[dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


def user_profile(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "isActive": user.is_active,
        "plan": plan_dict(user.plan) if user.plan else None,
        "createdAt": iso(user.created_at),
    }


def plan_dict(plan: Plan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "tier": plan.tier,
        "price": plan.price,
        "currency": plan.currency,
        "maxPapersPerMonth": plan.max_papers_per_month,
        "maxVariants": plan.max_variants,
        "includeAnswers": plan.include_answers,
        "features": plan.features or [],
        "isActive": plan.is_active,
        "createdAt": iso(plan.created_at),
    }


def course_dict(course: Course) -> dict[str, Any]:
    return {
        "id": course.id,
        "name": course.name,
        "description": course.description,
        "code": course.code,
        "credits": course.credits,
        "level": course.level,
        "boardOrUniversity": course.board_or_university,
        "language": course.language,
        "isActive": course.is_active,
        "createdAt": iso(course.created_at),
        "updatedAt": iso(course.updated_at),
    }


def material_dict(material: CourseMaterial, include_file: bool = True) -> dict[str, Any]:
    data = {
        "id": material.id,
        "courseId": material.course_id,
        "title": material.title,
        "description": material.description,
        "type": material.type,
        "year": material.year,
        "weightings": material.weightings,
        "styleNotes": material.style_notes,
        "isActive": material.is_active,
        "createdAt": iso(material.created_at),
    }
    if include_file:
        data.update({
            "fileUrl": material.file_url,
            "fileSize": material.file_size,
            "indexStatus": material.index_status,
            "chunksCount": material.chunks_count,
        })
    return data


def variant_dict(variant: PaperVariant) -> dict[str, Any]:
    return {
        "id": variant.id,
        "paperRequestId": variant.paper_request_id,
        "variantId": variant.variant_id,
        "paperData": variant.paper_data,
        "markingScheme": variant.marking_scheme,
        "createdAt": iso(variant.created_at),
    }


def paper_request_dict(paper: PaperRequest, with_variants: bool = False) -> dict[str, Any]:
    data = {
        "id": paper.id,
        "userId": paper.user_id,
        "courseId": paper.course_id,
        "examType": paper.exam_type,
        "totalMarks": paper.total_marks,
        "durationMinutes": paper.duration_minutes,
        "topicsInclude": paper.topics_include or [],
        "topicsExclude": paper.topics_exclude or [],
        "difficultyPref": paper.difficulty_pref,
        "styleOverrides": paper.style_overrides,
        "status": paper.status,
        "seed": paper.seed,
        "createdAt": iso(paper.created_at),
    }
    if with_variants:
        data["course"] = {"id": paper.course.id, "name": paper.course.name} if paper.course else None
        data["variants"] = [variant_dict(v) for v in paper.variants]
    return data


def grading_dict(grading: Optional[GradingResult]) -> Optional[dict[str, Any]]:
    if grading is None:
        return None
    return {
        "id": grading.id,
        "submissionId": grading.submission_id,
        "totalScore": grading.total_score,
        "maxScore": grading.max_score,
        "percentage": grading.percentage,
        "grade": grading.grade,
        "marksBreakdown": grading.marks_breakdown or [],
        "feedback": grading.feedback,
        "autoGraded": grading.auto_graded,
        "createdAt": iso(grading.created_at),
    }


def submission_dict(submission: PaperSubmission) -> dict[str, Any]:
    return {
        "id": submission.id,
        "userId": submission.user_id,
        "paperVariantId": submission.paper_variant_id,
        "submittedFile": submission.submitted_file,
        "extractedAnswers": submission.extracted_answers or [],
        "status": submission.status,
        "submittedAt": iso(submission.submitted_at),
        "gradedAt": iso(submission.graded_at),
    }


def team_dict(team: Team) -> dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "description": team.description,
        "createdBy": user_summary(team.created_by),
        "memberCount": len(team.members),
        "createdAt": iso(team.created_at),
    }
