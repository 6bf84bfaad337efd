"""Aggregate statistics for the user dashboard and the admin panel."""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database.models import (
    Course,
    CourseEnrollment,
    CourseMaterial,
    GradingResult,
    PaperRequest,
    PaperSubmission,
    PaperVariant,
    Plan,
    StripeSubscription,
    Team,
    User,
)
from .monitoring import check_dependencies, health_events

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
DEFAULT_PERIOD = "30d"


def month_bounds(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Start of the current month and start of the next one."""
    now = now or datetime.utcnow()
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


def papers_this_month(db: Session, user_id: Optional[str] = None) -> int:
    start, end = month_bounds()
    query = db.query(func.count(PaperRequest.id)).filter(
        PaperRequest.created_at >= start,
        PaperRequest.created_at < end,
    )
    if user_id is not None:
        query = query.filter(PaperRequest.user_id == user_id)
    return query.scalar() or 0


def _average(values) -> float:
    values = [v for v in values if v is not None]
    return sum(values) / len(values) if values else 0


def dashboard_stats(db: Session, user: User) -> dict[str, Any]:
    total_papers = db.query(func.count(PaperRequest.id)).filter(
        PaperRequest.user_id == user.id
    ).scalar() or 0
    total_courses = db.query(func.count(CourseEnrollment.id)).filter(
        CourseEnrollment.user_id == user.id
    ).scalar() or 0
    percentages = (
        db.query(GradingResult.percentage)
        .join(PaperSubmission, GradingResult.submission_id == PaperSubmission.id)
        .filter(PaperSubmission.user_id == user.id)
        .all()
    )
    return {
        "totalPapers": total_papers,
        "totalCourses": total_courses,
        "papersThisMonth": papers_this_month(db, user.id),
        "averageScore": _average(p for (p,) in percentages),
    }


def admin_stats(db: Session) -> dict[str, Any]:
    percentages = db.query(GradingResult.percentage).all()
    return {
        "totalStudents": db.query(User).filter(User.role == "STUDENT").count(),
        "totalCourses": db.query(Course).count(),
        "totalMaterials": db.query(CourseMaterial).count(),
        "totalTeams": db.query(User).filter(User.role == "TEAM").count(),
        "totalPlans": db.query(Plan).count(),
        "papersGeneratedThisMonth": papers_this_month(db),
        "averageScore": _average(p for (p,) in percentages),
        "activeSubscriptions": db.query(StripeSubscription).filter(
            StripeSubscription.status == "active"
        ).count(),
    }


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return now - timedelta(days=ANALYTICS_PERIODS.get(period, ANALYTICS_PERIODS[DEFAULT_PERIOD]))


def _course_stats(db: Session) -> list[dict[str, Any]]:
    # (course_id, user_id, percentage) for every graded submission
    graded = (
        db.query(PaperRequest.course_id, PaperSubmission.user_id, GradingResult.percentage)
        .join(PaperVariant, PaperVariant.paper_request_id == PaperRequest.id)
        .join(PaperSubmission, PaperSubmission.paper_variant_id == PaperVariant.id)
        .join(GradingResult, GradingResult.submission_id == PaperSubmission.id)
        .all()
    )
    grades = defaultdict(list)
    graded_users = defaultdict(set)
    for course_id, user_id, percentage in graded:
        grades[course_id].append(percentage)
        graded_users[course_id].add(user_id)

    stats = []
    for course in db.query(Course).order_by(Course.name).all():
        enrolled = {e.user_id for e in course.enrollments}
        completed = enrolled & graded_users[course.id]
        stats.append({
            "courseId": course.id,
            "courseName": course.name,
            "enrollments": len(enrolled),
            "completionRate": len(completed) / len(enrolled) if enrolled else 0,
            "avgGrade": _average(grades[course.id]),
        })
    return stats


def _team_stats(db: Session) -> list[dict[str, Any]]:
    stats = []
    for team in db.query(Team).order_by(Team.name).all():
        member_ids = [m.user_id for m in team.members]
        papers = 0
        percentages = []
        if member_ids:
            papers = db.query(func.count(PaperRequest.id)).filter(
                PaperRequest.user_id.in_(member_ids)
            ).scalar() or 0
            percentages = [
                p for (p,) in db.query(GradingResult.percentage)
                .join(PaperSubmission, GradingResult.submission_id == PaperSubmission.id)
                .filter(PaperSubmission.user_id.in_(member_ids))
                .all()
            ]
        stats.append({
            "teamId": team.id,
            "teamName": team.name,
            "memberCount": len(member_ids),
            "papersGenerated": papers,
            "avgPerformance": _average(percentages),
        })
    return stats


def _by_day(rows) -> dict[date, list]:
    buckets = defaultdict(list)
    for created_at, value in rows:
        buckets[created_at.date()].append(value)
    return buckets


def analytics(db: Session, period: str = DEFAULT_PERIOD) -> dict[str, Any]:
    """Admin analytics over `period` (7d, 30d, 90d or 1y)."""
    if period not in ANALYTICS_PERIODS:
        period = DEFAULT_PERIOD
    start = period_start(period)

    active_subs = db.query(StripeSubscription).filter(StripeSubscription.status == "active")
    total_revenue = db.query(func.sum(StripeSubscription.amount)).filter(
        StripeSubscription.status == "active"
    ).scalar() or 0

    overview = {
        "totalUsers": db.query(User).count(),
        "totalCourses": db.query(Course).count(),
        "totalTeams": db.query(Team).count(),
        "totalSubscriptions": active_subs.count(),
        "totalPaperRequests": db.query(PaperRequest).count(),
        "totalSubmissions": db.query(PaperSubmission).count(),
        "totalRevenue": total_revenue,
    }

    new_users = _by_day(
        db.query(User.created_at, User.id).filter(User.created_at >= start).all()
    )
    active_users = _by_day(
        db.query(PaperRequest.created_at, PaperRequest.user_id)
        .filter(PaperRequest.created_at >= start)
        .all()
    )
    user_growth = [
        {
            "date": day.isoformat(),
            "newUsers": len(new_users.get(day, [])),
            "activeUsers": len(set(active_users.get(day, []))),
        }
        for day in sorted(set(new_users) | set(active_users))
    ]

    revenue = _by_day(
        active_subs.filter(StripeSubscription.created_at >= start)
        .with_entities(StripeSubscription.created_at, StripeSubscription.amount)
        .all()
    )
    revenue_data = [
        {"date": day.isoformat(), "revenue": sum(a or 0 for a in amounts), "subscriptions": len(amounts)}
        for day, amounts in sorted(revenue.items())
    ]

    recent_activity = [
        {
            "id": user.id,
            "type": "user_registration",
            "description": f"New user {user.name or user.email} registered",
            "timestamp": user.created_at.isoformat() if user.created_at else None,
            "userId": user.id,
            "userName": user.name or "Unknown",
        }
        for user in db.query(User).order_by(User.created_at.desc()).limit(10).all()
    ]

    return {
        "period": period,
        "overview": overview,
        "userGrowth": user_growth,
        "courseStats": _course_stats(db),
        "teamStats": _team_stats(db),
        "revenueData": revenue_data,
        "recentActivity": recent_activity,
        "systemHealth": health_events(check_dependencies()),
    }
