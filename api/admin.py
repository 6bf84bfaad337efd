"""Admin panel routes for PaperSmith.

Every route requires a SUPER_ADMIN or TEAM account; analytics, settings
and vector store sync are SUPER_ADMIN only.
"""

import logging

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from sqlalchemy.orm import Session

from .auth import require_staff, require_super_admin
from .database import (
    MATERIAL_TYPES,
    PLAN_TIERS,
    get_db_dependency,
    Course,
    CourseMaterial,
    Plan,
    StripeSubscription,
    Team,
    TeamMember,
    User,
)
from .rate_limit import limiter
from .schemas import (
    AdminCourseRequest,
    MaterialRequest,
    PlanRequest,
    SettingsUpdate,
    TeamMemberRequest,
    TeamRequest,
)
from .serializers import (
    course_dict,
    grading_dict,
    iso,
    material_dict,
    paper_request_dict,
    plan_dict,
    submission_dict,
    team_dict,
    user_profile,
    user_summary,
)
from .services.extraction import DOCX_TYPE, PDF_TYPE, TEXT_TYPE, content_type_for
from .services.indexing import index_material_background, sync_with_database
from .services.retrieval import (
    VectorStoreError,
    delete_course_points,
    delete_material_points,
    is_qdrant_enabled,
)
from .services.settings import InvalidSettingsError, get_settings, update_settings
from .services.stats import DEFAULT_PERIOD, admin_stats, analytics
from .services.storage import delete_file_for_url, save_file, unique_filename, url_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
UPLOAD_TYPES = {PDF_TYPE, DOCX_TYPE, TEXT_TYPE}


def admin_course_dict(course: Course) -> dict:
    data = course_dict(course)
    data["createdBy"] = user_summary(course.created_by)
    data["_count"] = {
        "materials": len(course.materials),
        "enrollments": len(course.enrollments),
    }
    return data


def admin_material_dict(material: CourseMaterial) -> dict:
    data = material_dict(material)
    data["indexError"] = material.index_error
    data["course"] = {"name": material.course.name, "code": material.course.code} if material.course else None
    data["uploadedBy"] = user_summary(material.uploaded_by)
    return data


def get_or_404(db: Session, model, object_id: str, label: str):
    obj = db.query(model).filter(model.id == object_id).first()
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


def remove_course_vectors(course_id: str) -> None:
    try:
        delete_course_points(course_id)
    except VectorStoreError as e:
        logger.error("Failed to remove vectors for course %s: %s", course_id, e)


# ============== Courses ==============


@router.get("/courses")
def list_courses(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    courses = db.query(Course).order_by(Course.created_at.desc()).all()
    return [admin_course_dict(c) for c in courses]


def validate_course(request: AdminCourseRequest, db: Session, course_id: str = None):
    if not (request.name and request.description and request.code and request.credits):
        raise HTTPException(status_code=400, detail="Missing required fields")

    query = db.query(Course).filter(Course.code == request.code)
    if course_id:
        query = query.filter(Course.id != course_id)
    if query.first():
        raise HTTPException(status_code=400, detail="Course code already exists")


@router.post("/courses", status_code=201)
def create_course(
    request: AdminCourseRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    validate_course(request, db)

    course = Course(
        name=request.name,
        description=request.description,
        code=request.code,
        credits=request.credits,
        level=request.level or "Undergraduate",
        board_or_university=request.board_or_university or "Generic University",
        language=request.language or "English",
        created_by_id=current_user.id,
    )
    db.add(course)
    db.commit()
    db.refresh(course)
    return admin_course_dict(course)


@router.put("/courses/{course_id}")
def update_course(
    course_id: str,
    request: AdminCourseRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    course = get_or_404(db, Course, course_id, "Course")
    validate_course(request, db, course_id=course.id)

    course.name = request.name
    course.description = request.description
    course.code = request.code
    course.credits = request.credits
    if request.level is not None:
        course.level = request.level
    if request.board_or_university is not None:
        course.board_or_university = request.board_or_university
    if request.language is not None:
        course.language = request.language
    was_active = course.is_active
    if request.is_active is not None:
        course.is_active = request.is_active

    db.commit()
    db.refresh(course)

    if was_active and not course.is_active:
        remove_course_vectors(course.id)
    elif course.is_active and not was_active:
        for material in course.materials:
            if material.is_active:
                background_tasks.add_task(index_material_background, material.id)

    return admin_course_dict(course)


@router.delete("/courses/{course_id}")
def delete_course(
    course_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    course = get_or_404(db, Course, course_id, "Course")
    if course.materials or course.enrollments:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete course with existing materials or enrollments",
        )
    db.delete(course)
    db.commit()
    remove_course_vectors(course_id)
    return {"message": "Course deleted successfully"}


# ============== Materials ==============


@router.get("/materials")
def list_materials(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    materials = db.query(CourseMaterial).order_by(CourseMaterial.created_at.desc()).all()
    return [admin_material_dict(m) for m in materials]


def validate_material(request: MaterialRequest, require_file: bool):
    if not (request.title and request.description and request.type and request.course_id):
        raise HTTPException(status_code=400, detail="Missing required fields")
    if require_file and not request.file_url:
        raise HTTPException(status_code=400, detail="Missing required fields")
    if request.type not in MATERIAL_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid type. Must be one of {', '.join(MATERIAL_TYPES)}",
        )


@router.post("/materials", status_code=201)
def create_material(
    request: MaterialRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    """Create a material and queue its text for indexing."""
    validate_material(request, require_file=True)
    get_or_404(db, Course, request.course_id, "Course")

    material = CourseMaterial(
        course_id=request.course_id,
        title=request.title,
        description=request.description,
        type=request.type,
        file_url=request.file_url,
        file_size=request.file_size or 0,
        content=request.content,
        year=request.year,
        weightings=request.weightings,
        style_notes=request.style_notes,
        uploaded_by_id=current_user.id,
        index_status="pending",
    )
    db.add(material)
    db.commit()
    db.refresh(material)

    background_tasks.add_task(index_material_background, material.id)
    return admin_material_dict(material)


@router.put("/materials/{material_id}")
def update_material(
    material_id: str,
    request: MaterialRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    material = get_or_404(db, CourseMaterial, material_id, "Material")
    validate_material(request, require_file=False)
    get_or_404(db, Course, request.course_id, "Course")

    file_changed = bool(request.file_url) and request.file_url != material.file_url

    material.title = request.title
    material.description = request.description
    material.type = request.type
    material.course_id = request.course_id
    material.file_url = request.file_url or material.file_url
    material.file_size = request.file_size or material.file_size
    if request.content is not None:
        material.content = request.content
    elif file_changed:
        material.content = None
    if request.year is not None:
        material.year = request.year
    if request.weightings is not None:
        material.weightings = request.weightings
    if request.style_notes is not None:
        material.style_notes = request.style_notes
    if request.is_active is not None:
        material.is_active = request.is_active
    material.index_status = "pending"

    db.commit()
    db.refresh(material)

    background_tasks.add_task(index_material_background, material.id)
    return admin_material_dict(material)


@router.delete("/materials/{material_id}")
def delete_material(
    material_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    """Delete a material row, its vectors and its uploaded file.

    Vector and file cleanup failures are logged; the row is removed anyway.
    """
    material = get_or_404(db, CourseMaterial, material_id, "Material")

    try:
        delete_material_points(material.id)
    except VectorStoreError as e:
        logger.error("Error deleting from Qdrant: %s", e)

    try:
        delete_file_for_url(material.file_url)
    except OSError as e:
        logger.error("Error deleting file: %s", e)

    db.delete(material)
    db.commit()
    return {"message": "Material deleted successfully"}


@router.post("/materials/upload")
@limiter.limit("20/minute")
async def upload_material_file(
    request: Request,
    file: UploadFile = File(None),
    current_user: User = Depends(require_staff),
):
    """Store a PDF, DOCX or TXT file and return its URL for a material."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    content = await file.read()
    if len(content) > MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=400, detail="File size must be less than 10MB")

    content_type = content_type_for(file.filename or "", file.content_type or "")
    if content_type not in UPLOAD_TYPES:
        raise HTTPException(status_code=400, detail="Only PDF, DOCX, and TXT files are allowed")

    filename = unique_filename(file.filename or "upload")
    await save_file(content, filename)
    logger.info("Uploaded material file %s (%d bytes)", filename, len(content))

    return {
        "fileUrl": url_for(filename),
        "fileName": filename,
        "fileSize": len(content),
    }


@router.post("/materials/sync")
async def sync_materials(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_super_admin),
):
    """Reconcile the Qdrant collection with the materials table."""
    if not is_qdrant_enabled():
        raise HTTPException(status_code=400, detail="Qdrant indexing is disabled")
    try:
        result = await sync_with_database(db)
    except VectorStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "synced", **result}


# ============== Plans ==============


@router.get("/plans")
def list_plans(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    plans = db.query(Plan).order_by(Plan.price.asc()).all()
    result = []
    for plan in plans:
        data = plan_dict(plan)
        data["_count"] = {"users": len(plan.users)}
        result.append(data)
    return result


def validate_plan(request: PlanRequest):
    required = [request.name, request.description, request.tier]
    numbers = [request.price, request.max_papers_per_month, request.max_variants]
    if not all(required) or any(n is None for n in numbers):
        raise HTTPException(status_code=400, detail="Missing required fields")
    if request.tier not in PLAN_TIERS:
        raise HTTPException(status_code=400, detail="Invalid tier. Must be FREE, MEDIUM, or PRO")
    if request.max_variants < 1 or request.max_papers_per_month < -1:
        raise HTTPException(status_code=400, detail="Invalid plan limits")


def apply_plan(plan: Plan, request: PlanRequest):
    plan.name = request.name
    plan.description = request.description
    plan.tier = request.tier
    plan.price = request.price
    plan.currency = request.currency or plan.currency or "USD"
    plan.max_papers_per_month = request.max_papers_per_month
    plan.max_variants = request.max_variants
    plan.include_answers = request.include_answers
    plan.features = request.features
    plan.is_active = request.is_active


@router.post("/plans", status_code=201)
def create_plan(
    request: PlanRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    validate_plan(request)
    plan = Plan()
    apply_plan(plan, request)
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan_dict(plan)


@router.put("/plans/{plan_id}")
def update_plan(
    plan_id: str,
    request: PlanRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    validate_plan(request)
    plan = get_or_404(db, Plan, plan_id, "Plan")
    apply_plan(plan, request)
    db.commit()
    db.refresh(plan)
    return plan_dict(plan)


@router.delete("/plans/{plan_id}")
def delete_plan(
    plan_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    plan = get_or_404(db, Plan, plan_id, "Plan")
    subscribers = db.query(StripeSubscription).filter(StripeSubscription.plan_id == plan.id).count()
    if plan.users or subscribers:
        raise HTTPException(status_code=400, detail="Cannot delete plan with active subscribers")
    db.delete(plan)
    db.commit()
    return {"message": "Plan deleted successfully"}


# ============== Teams ==============


@router.get("/teams")
def list_teams(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    teams = db.query(Team).order_by(Team.created_at.desc()).all()
    return [team_dict(t) for t in teams]


@router.post("/teams", status_code=201)
def create_team(
    request: TeamRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    if not request.name:
        raise HTTPException(status_code=400, detail="Team name is required")
    team = Team(name=request.name, description=request.description, created_by_id=current_user.id)
    db.add(team)
    db.commit()
    db.refresh(team)
    return team_dict(team)


@router.put("/teams/{team_id}")
def update_team(
    team_id: str,
    request: TeamRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    if not request.name:
        raise HTTPException(status_code=400, detail="Team name is required")
    team = get_or_404(db, Team, team_id, "Team")
    team.name = request.name
    team.description = request.description
    db.commit()
    db.refresh(team)
    return team_dict(team)


@router.delete("/teams/{team_id}")
def delete_team(
    team_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    team = get_or_404(db, Team, team_id, "Team")
    if team.members:
        raise HTTPException(status_code=400, detail="Cannot delete team with members")
    db.delete(team)
    db.commit()
    return {"message": "Team deleted successfully"}


@router.get("/teams/{team_id}/members")
def list_team_members(
    team_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    get_or_404(db, Team, team_id, "Team")
    members = db.query(TeamMember).filter(
        TeamMember.team_id == team_id
    ).order_by(TeamMember.joined_at.desc()).all()
    return [
        {
            "id": m.user.id,
            "name": m.user.name,
            "email": m.user.email,
            "role": m.role,
            "joinedAt": iso(m.joined_at),
        }
        for m in members
    ]


@router.post("/teams/{team_id}/members", status_code=201)
def add_team_member(
    team_id: str,
    request: TeamMemberRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    team = get_or_404(db, Team, team_id, "Team")

    user = None
    if request.user_id:
        user = db.query(User).filter(User.id == request.user_id).first()
    elif request.email:
        user = db.query(User).filter(User.email == request.email.strip().lower()).first()
    else:
        raise HTTPException(status_code=400, detail="userId or email is required")
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    existing = db.query(TeamMember).filter_by(team_id=team.id, user_id=user.id).first()
    if existing:
        raise HTTPException(status_code=409, detail="User is already a member of this team")

    member = TeamMember(team_id=team.id, user_id=user.id, role=request.role or "MEMBER")
    db.add(member)
    db.commit()
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": member.role,
        "joinedAt": iso(member.joined_at),
    }


# ============== Students ==============


@router.get("/students")
def list_students(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    students = db.query(User).filter(User.role == "STUDENT").order_by(User.created_at.desc()).all()
    result = []
    for student in students:
        data = user_profile(student)
        data["_count"] = {
            "courses": len(student.enrollments),
            "paperRequests": len(student.paper_requests),
            "submissions": len(student.submissions),
        }
        result.append(data)
    return result


@router.get("/students/{user_id}")
def get_student(
    user_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    student = db.query(User).filter(User.id == user_id).first()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")

    paper_requests = sorted(student.paper_requests, key=lambda p: p.created_at, reverse=True)[:10]
    submissions = sorted(student.submissions, key=lambda s: s.submitted_at, reverse=True)[:10]

    data = user_profile(student)
    data["courses"] = [
        {
            "courseId": e.course_id,
            "enrolledAt": iso(e.enrolled_at),
            "course": {"name": e.course.name, "code": e.course.code},
        }
        for e in student.enrollments
    ]
    data["paperRequests"] = [
        {**paper_request_dict(p), "course": {"name": p.course.name}}
        for p in paper_requests
    ]
    data["submissions"] = []
    for s in submissions:
        item = submission_dict(s)
        course = s.paper_variant.paper_request.course
        item["course"] = {"name": course.name} if course else None
        grading = grading_dict(s.grading)
        item["grading"] = {"percentage": grading["percentage"]} if grading else None
        data["submissions"].append(item)
    return data


@router.delete("/students/{user_id}")
def delete_student(
    user_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    student = db.query(User).filter(User.id == user_id).first()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")

    if student.role == "SUPER_ADMIN":
        raise HTTPException(status_code=403, detail="Cannot delete super admin users")

    if student.enrollments or student.paper_requests or student.submissions:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete student with existing enrollments, paper requests, or submissions",
        )

    db.delete(student)
    db.commit()
    return {"message": "Student deleted successfully"}


# ============== Stats, Analytics & Settings ==============


@router.get("/stats")
def get_stats(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_staff),
):
    return admin_stats(db)


@router.get("/analytics")
def get_analytics(
    period: str = Query(DEFAULT_PERIOD),
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_super_admin),
):
    return analytics(db, period)


@router.get("/settings")
def read_settings(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_super_admin),
):
    return get_settings(db)


@router.put("/settings")
def write_settings(
    request: SettingsUpdate,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(require_super_admin),
):
    if not request.section or not request.data:
        raise HTTPException(status_code=400, detail="Missing section or data")
    try:
        settings = update_settings(db, request.section, request.data)
    except InvalidSettingsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "success": True,
        "message": f"{request.section} settings updated successfully",
        "settings": settings,
    }
