"""PaperSmith - Production API

FastAPI application with:
- JWT authentication with registration and login
- Role-scoped courses (STUDENT, TEAM, SUPER_ADMIN) and course materials
- Secure inline viewing of material PDFs
- AI paper generation grounded in course materials retrieved from Qdrant
- Automated grading of uploaded answer scripts
- Subscription plans sold through Stripe Checkout
- SEO metadata (robots.txt, sitemap.xml, web manifest)
- Rate limiting per user, monitoring and health checks
- Admin panel routes (see admin.py)
"""

import logging
import os
import re
import time
from datetime import datetime
from typing import Optional

from fastapi import (
    FastAPI,
    HTTPException,
    Depends,
    Request,
    UploadFile,
    File,
    Form,
    Header,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy import or_
from sqlalchemy.orm import Session
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dotenv import load_dotenv

load_dotenv()

from .database import (
    init_database,
    get_db_dependency,
    Course,
    CourseEnrollment,
    CourseMaterial,
    GradingResult,
    PaperRequest,
    PaperSubmission,
    PaperVariant,
    Plan,
    StripeSubscription,
    User,
)
from .auth import (
    get_current_user,
    get_optional_user,
    hash_password,
    verify_password,
    create_access_token,
    STAFF_ROLES,
)
from .rate_limit import limiter
from .schemas import (
    CancelRequest,
    CheckoutRequest,
    CourseCreate,
    LoginRequest,
    PaperGenerateRequest,
    RegisterRequest,
)
from .serializers import (
    course_dict,
    grading_dict,
    iso,
    material_dict,
    paper_request_dict,
    plan_dict,
    submission_dict,
    user_profile,
    variant_dict,
)
from .services import billing, seo
from .services.extraction import (
    DOCX_TYPE,
    PDF_TYPE,
    ExtractionError,
    content_type_for,
    extract_answers_from_text,
    extract_text,
)
from .services.generation import (
    GenerationError,
    build_context_items,
    build_grading_prompt,
    build_paper_prompt,
    generate_paper,
    grade_paper,
    parse_model_json,
)
from .services.monitoring import check_dependencies, metrics, normalize_path, overall_status
from .services.retrieval import search_course_materials
from .services.stats import dashboard_stats, papers_this_month
from .services.storage import path_for_url, read_file, save_file, unique_filename, url_for

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
RAG_TOP_K = 12
GRADABLE_TYPES = {PDF_TYPE, DOCX_TYPE}

# Initialize database on startup
init_database()

# Create FastAPI app
app = FastAPI(
    title="PaperSmith",
    description="Exam paper generation and automated grading grounded in course materials",
    version=API_VERSION,
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Collect request metrics for every HTTP request."""
    metrics.increment_active()
    start_time = time.time()
    try:
        response = await call_next(request)
        duration = time.time() - start_time
        path = normalize_path(request.url.path)
        metrics.record_request(request.method, path, response.status_code, duration)
        return response
    finally:
        metrics.decrement_active()


def token_response(user: User) -> dict:
    return {
        "access_token": create_access_token(user.id, user.email, user.role),
        "token_type": "bearer",
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
    }


# ============== Authentication Endpoints ==============


@app.post("/api/auth/register")
@limiter.limit("5/minute")
def register(
    request_obj: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db_dependency),
):
    """Register a new student account on the free plan and return a JWT."""
    email = request_obj.email.strip().lower()
    if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    if len(request_obj.password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")

    existing = db.query(User).filter_by(email=email).first()
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")

    free_plan = db.query(Plan).filter_by(tier="FREE", is_active=True).first()
    user = User(
        name=request_obj.name,
        email=email,
        password_hash=hash_password(request_obj.password),
        role="STUDENT",
        is_active=True,
        plan_id=free_plan.id if free_plan else None,
    )

    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)

    return token_response(user)


@app.post("/api/auth/login")
@limiter.limit("10/minute")
def login(
    request_obj: LoginRequest,
    request: Request,
    db: Session = Depends(get_db_dependency),
):
    """Authenticate and return a JWT token."""
    user = db.query(User).filter_by(email=request_obj.email.strip().lower()).first()

    if not user or not user.password_hash:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not verify_password(request_obj.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")

    return token_response(user)


@app.get("/api/auth/me")
def get_me(current_user: User = Depends(get_current_user)):
    """Get the current user's profile."""
    return user_profile(current_user)


# ============== Helper Functions ==============


def get_active_course_or_404(course_id: str, db: Session) -> Course:
    course = db.query(Course).filter(Course.id == course_id, Course.is_active.is_(True)).first()
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def active_materials(course_id: str, db: Session) -> list[CourseMaterial]:
    return db.query(CourseMaterial).filter(
        CourseMaterial.course_id == course_id,
        CourseMaterial.is_active.is_(True),
    ).order_by(CourseMaterial.type.asc(), CourseMaterial.created_at.desc()).all()


# ============== Course Endpoints ==============


@app.get("/api/courses")
def list_courses(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """List active courses visible to the current user.

    SUPER_ADMIN sees every course, TEAM sees courses it created or is
    enrolled in, STUDENT sees enrolled courses only.
    """
    query = db.query(Course).filter(Course.is_active.is_(True))
    enrolled = Course.enrollments.any(CourseEnrollment.user_id == current_user.id)

    if current_user.role == "TEAM":
        query = query.filter(or_(Course.created_by_id == current_user.id, enrolled))
    elif current_user.role != "SUPER_ADMIN":
        query = query.filter(enrolled)

    courses = query.order_by(Course.created_at.desc()).all()
    return {
        "courses": [
            {
                "id": c.id,
                "name": c.name,
                "description": c.description,
                "level": c.level,
                "boardOrUniversity": c.board_or_university,
                "language": c.language,
                "createdBy": c.created_by.name if c.created_by else None,
                "createdAt": iso(c.created_at),
            }
            for c in courses
        ]
    }


@app.post("/api/courses")
def create_course(
    request: CourseCreate,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """Create a course. Only TEAM and SUPER_ADMIN accounts may create courses."""
    if current_user.role not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    if not (request.name and request.description and request.level and request.board_or_university):
        raise HTTPException(status_code=400, detail="Missing required fields")

    timestamp = str(int(time.time() * 1000))
    course = Course(
        name=request.name,
        description=request.description,
        code=f"{request.name[:3].upper()}-{timestamp[-4:]}",
        credits=3,
        level=request.level,
        board_or_university=request.board_or_university,
        language=request.language or "English",
        created_by_id=current_user.id,
    )

    db.add(course)
    db.commit()
    db.refresh(course)

    return {"success": True, "course": course_dict(course)}


@app.get("/api/courses/{course_id}")
def get_course(
    course_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """Public course detail with material and enrollment counts.

    Signed-in callers also learn whether they are enrolled.
    """
    course = get_active_course_or_404(course_id, db)
    data = course_dict(course)
    data["_count"] = {
        "materials": sum(1 for m in course.materials if m.is_active),
        "enrollments": len(course.enrollments),
    }
    data["isEnrolled"] = current_user is not None and any(
        e.user_id == current_user.id for e in course.enrollments
    )
    return data


@app.get("/api/courses/{course_id}/materials")
def list_course_materials(
    course_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """Active materials of a course, including their file URLs."""
    get_active_course_or_404(course_id, db)
    return {"materials": [material_dict(m) for m in active_materials(course_id, db)]}


@app.get("/api/courses/{course_id}/materials/public")
def list_public_course_materials(course_id: str, db: Session = Depends(get_db_dependency)):
    """Material listing for anonymous visitors: no file URL or content."""
    get_active_course_or_404(course_id, db)
    materials = []
    for m in active_materials(course_id, db):
        item = material_dict(m, include_file=False)
        item.update({"hasFile": True, "requiresAuth": True})
        materials.append(item)
    return {"materials": materials}


@app.post("/api/courses/{course_id}/enroll")
def enroll_in_course(
    course_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    course = get_active_course_or_404(course_id, db)
    existing = db.query(CourseEnrollment).filter_by(user_id=current_user.id, course_id=course.id).first()
    if existing:
        raise HTTPException(status_code=409, detail="Already enrolled in this course")

    enrollment = CourseEnrollment(user_id=current_user.id, course_id=course.id)
    db.add(enrollment)
    db.commit()
    return {"status": "enrolled", "courseId": course.id, "enrolledAt": iso(enrollment.enrolled_at)}


@app.delete("/api/courses/{course_id}/enroll")
def leave_course(
    course_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    enrollment = db.query(CourseEnrollment).filter_by(user_id=current_user.id, course_id=course_id).first()
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    db.delete(enrollment)
    db.commit()
    return {"status": "unenrolled", "courseId": course_id}


@app.get("/api/materials/{material_id}/view")
async def view_material(
    material_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """Stream a material PDF for inline viewing only."""
    material = db.query(CourseMaterial).filter(
        CourseMaterial.id == material_id,
        CourseMaterial.is_active.is_(True),
    ).first()
    if not material or not material.course or not material.course.is_active:
        raise HTTPException(status_code=404, detail="Material not found")

    if not material.file_url:
        raise HTTPException(status_code=404, detail="No file available")

    path = path_for_url(material.file_url)
    if path is None:
        raise HTTPException(status_code=404, detail="Invalid file")
    if not path.exists():
        raise HTTPException(status_code=404, detail="File not found on server")

    content = await read_file(path)
    safe_title = material.title.replace('"', "'")
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "SAMEORIGIN",
            "Content-Disposition": f'inline; filename="{safe_title}.pdf"',
            "X-Secure-View": "true",
            "X-Download-Options": "noopen",
        },
    )


# ============== Dashboard ==============


@app.get("/api/dashboard/stats")
def get_dashboard_stats(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    return dashboard_stats(db, current_user)


# ============== Papers ==============


@app.post("/api/papers/generate")
@limiter.limit("10/minute")
async def generate_paper_endpoint(
    request_obj: PaperGenerateRequest,
    request: Request,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """Generate exam paper variants for a course.

    Checks the plan quota, retrieves course context from Qdrant, asks the
    model for the paper JSON and stores the request with one variant per
    generated paper.
    """
    plan = current_user.plan
    if not plan:
        raise HTTPException(status_code=403, detail="No active plan")

    used = papers_this_month(db, current_user.id)
    if not plan.is_unlimited and used >= plan.max_papers_per_month:
        raise HTTPException(
            status_code=403,
            detail={"message": "Monthly paper limit exceeded", "code": "quota_exhausted"},
        )

    course = db.query(Course).filter(Course.id == request_obj.course_id).first()
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    search_query = " ".join(
        part for part in [request_obj.exam_type, " ".join(request_obj.topics_include), course.name] if part
    )
    results = await search_course_materials(course.id, search_query, top_k=RAG_TOP_K)
    context = build_context_items(results)

    prompt = build_paper_prompt(
        course,
        plan,
        used,
        request_obj.model_dump(),
        context,
    )

    try:
        paper_data = parse_model_json(await generate_paper(prompt))
    except GenerationError as e:
        logger.error("Paper generation failed for course %s: %s", course.id, e)
        raise HTTPException(status_code=500, detail="Failed to generate paper")

    status = paper_data.get("status")
    error = paper_data.get("error") or {}
    if status == "error":
        raise HTTPException(
            status_code=400,
            detail={"message": error.get("message") or "Paper generation failed", "code": error.get("code")},
        )
    if status == "needs_more_context":
        raise HTTPException(
            status_code=422,
            detail={
                "message": error.get("message") or "More course material is needed to generate this paper",
                "code": "needs_more_context",
                "missingFields": paper_data.get("missing_fields") or [],
            },
        )

    meta = paper_data.get("meta") or {}
    paper_request = PaperRequest(
        user_id=current_user.id,
        course_id=course.id,
        exam_type=request_obj.exam_type,
        total_marks=request_obj.total_marks,
        duration_minutes=request_obj.duration_minutes,
        topics_include=request_obj.topics_include,
        topics_exclude=request_obj.topics_exclude,
        difficulty_pref=request_obj.difficulty_pref,
        style_overrides=request_obj.style_overrides,
        status="GENERATED",
        seed=meta.get("seed") or request_obj.seed,
    )
    db.add(paper_request)
    db.flush()

    marking_scheme = paper_data.get("marking_scheme") or {}
    variants = []
    for i, variant in enumerate(paper_data.get("paper") or []):
        paper_variant = PaperVariant(
            paper_request_id=paper_request.id,
            variant_id=str(variant.get("variant_id") or f"V{i + 1}"),
            paper_data=variant,
            marking_scheme=marking_scheme,
        )
        db.add(paper_variant)
        variants.append(paper_variant)

    db.commit()
    db.refresh(paper_request)
    logger.info("Generated %d variant(s) for paper request %s", len(variants), paper_request.id)

    return {
        "success": True,
        "paperRequest": paper_request_dict(paper_request),
        "variants": [variant_dict(v) for v in variants],
        "paperData": paper_data,
    }


@app.post("/api/papers/grade")
@limiter.limit("10/minute")
async def grade_paper_endpoint(
    request: Request,
    paper_variant_id: Optional[str] = Form(None, alias="paperVariantId"),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """Grade an uploaded PDF or DOCX answer script against a paper variant."""
    if not paper_variant_id or file is None:
        raise HTTPException(status_code=400, detail="Missing required fields")

    variant = db.query(PaperVariant).filter(PaperVariant.id == paper_variant_id).first()
    if not variant:
        raise HTTPException(status_code=404, detail="Paper variant not found")

    if variant.paper_request.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Access denied")

    content_type = content_type_for(file.filename or "", file.content_type or "")
    if content_type not in GRADABLE_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type")

    content = await file.read()
    try:
        text = extract_text(content, content_type)
    except ExtractionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    answers = extract_answers_from_text(text, variant.paper_data)
    prompt = build_grading_prompt(variant.id, variant.marking_scheme, answers)

    try:
        grading_data = parse_model_json(await grade_paper(prompt))
    except GenerationError as e:
        logger.error("Grading failed for variant %s: %s", variant.id, e)
        raise HTTPException(status_code=500, detail="Failed to grade paper")

    if grading_data.get("status") == "error":
        error = grading_data.get("error") or {}
        raise HTTPException(
            status_code=400,
            detail={"message": error.get("message") or "Grading failed", "code": error.get("code")},
        )

    filename = unique_filename(file.filename or "answers")
    await save_file(content, filename)

    submission = PaperSubmission(
        user_id=current_user.id,
        paper_variant_id=variant.id,
        submitted_file=url_for(filename),
        extracted_answers=answers,
        status="SUBMITTED",
    )
    db.add(submission)
    db.flush()

    grading = GradingResult(
        submission_id=submission.id,
        total_score=grading_data.get("total_score") or 0,
        max_score=grading_data.get("max_score") or 0,
        percentage=grading_data.get("percentage") or 0,
        grade=grading_data.get("grade"),
        marks_breakdown=grading_data.get("marks_breakdown") or [],
        feedback=grading_data.get("feedback"),
        auto_graded=True,
    )
    db.add(grading)

    submission.status = "GRADED"
    submission.graded_at = datetime.utcnow()
    db.commit()
    db.refresh(submission)

    return {
        "success": True,
        "submission": submission_dict(submission),
        "grading": grading_dict(grading),
        "gradingData": grading_data,
    }


@app.get("/api/papers")
def list_papers(
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """The current user's paper requests, newest first."""
    papers = db.query(PaperRequest).filter(
        PaperRequest.user_id == current_user.id
    ).order_by(PaperRequest.created_at.desc()).all()
    return {"papers": [paper_request_dict(p, with_variants=True) for p in papers]}


@app.get("/api/papers/{request_id}")
def get_paper(
    request_id: str,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    paper = db.query(PaperRequest).filter(PaperRequest.id == request_id).first()
    if not paper:
        raise HTTPException(status_code=404, detail="Paper not found")
    if paper.user_id != current_user.id and current_user.role != "SUPER_ADMIN":
        raise HTTPException(status_code=403, detail="Access denied")
    return paper_request_dict(paper, with_variants=True)


# ============== Plans & Billing ==============


@app.get("/api/plans")
def list_plans(db: Session = Depends(get_db_dependency)):
    plans = db.query(Plan).filter(Plan.is_active.is_(True)).order_by(Plan.price.asc()).all()
    return {"plans": [plan_dict(p) for p in plans]}


@app.post("/api/billing/checkout")
def create_checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    plan = db.query(Plan).filter(Plan.id == request.plan_id, Plan.is_active.is_(True)).first()
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    if plan.price <= 0:
        raise HTTPException(status_code=400, detail="Free plans do not require checkout")

    try:
        session = billing.create_checkout_session(current_user, plan)
    except billing.BillingError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"sessionId": session.id, "url": session.url}


@app.post("/api/billing/portal")
def create_portal(current_user: User = Depends(get_current_user)):
    if not current_user.stripe_customer_id:
        raise HTTPException(status_code=400, detail="No billing account found")
    try:
        session = billing.create_portal_session(current_user.stripe_customer_id)
    except billing.BillingError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"url": session.url}


@app.post("/api/billing/cancel")
def cancel_billing(
    request: CancelRequest,
    db: Session = Depends(get_db_dependency),
    current_user: User = Depends(get_current_user),
):
    """Cancel the user's active subscription at the end of the period."""
    query = db.query(StripeSubscription).filter(
        StripeSubscription.user_id == current_user.id,
        StripeSubscription.status == "active",
    )
    if request.subscription_id:
        query = query.filter(StripeSubscription.stripe_subscription_id == request.subscription_id)
    subscription = query.order_by(StripeSubscription.created_at.desc()).first()
    if not subscription or not subscription.stripe_subscription_id:
        raise HTTPException(status_code=404, detail="Subscription not found")

    try:
        billing.cancel_subscription(subscription.stripe_subscription_id)
    except billing.BillingError as e:
        raise HTTPException(status_code=502, detail=str(e))

    subscription.cancel_at_period_end = True
    db.commit()
    return {"status": "canceling", "subscriptionId": subscription.stripe_subscription_id}


@app.post("/api/billing/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db_dependency),
):
    payload = await request.body()
    try:
        event = billing.construct_event(payload, stripe_signature)
    except billing.WebhookNotConfiguredError:
        raise HTTPException(status_code=503, detail="Webhook is not configured")
    except billing.BillingError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(status_code=400, detail="Invalid payload or signature")

    handled = billing.handle_webhook_event(db, event)
    return {"received": True, "handled": handled}


# ============== SEO ==============


@app.get("/robots.txt")
def robots():
    return PlainTextResponse(seo.robots_txt())


@app.get("/sitemap.xml")
def sitemap(db: Session = Depends(get_db_dependency)):
    courses = db.query(Course).filter(Course.is_active.is_(True)).all()
    return Response(content=seo.sitemap_xml(courses), media_type="application/xml")


@app.get("/manifest.webmanifest")
def manifest():
    return JSONResponse(content=seo.web_manifest(), media_type="application/manifest+json")


# ============== Health Check & Monitoring ==============


@app.get("/api/health")
def health_check():
    """Health check with per-dependency status.

    Checks the database and Qdrant connectivity so operators can quickly
    identify which service is down.
    """
    checks = check_dependencies()
    return {
        "status": overall_status(checks),
        "version": API_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks,
    }


@app.get("/api/metrics")
def get_metrics():
    """Prometheus-compatible metrics endpoint."""
    return PlainTextResponse(
        content=metrics.to_prometheus(),
        media_type="text/plain; version=0.0.4",
    )


from .admin import router as admin_router  # noqa: E402

app.include_router(admin_router)
