"""Tests for paper generation and grading with the model and search mocked."""

import io
import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

from docx import Document

from api.database.models import GradingResult, PaperRequest, PaperSubmission, PaperVariant

PAPER_OUTPUT = {
    "status": "ok",
    "meta": {"seed": "seed-42", "style_alignment": "Matches 2023 midterm"},
    "paper": [
        {
            "variant_id": "A",
            "title": "Midterm A",
            "instructions": "Answer all questions",
            "sections": [
                {
                    "name": "Section A",
                    "questions": [
                        {"id": "Q1", "type": "short", "text": "Define recursion.", "marks": 5},
                        {"id": "Q2", "type": "short", "text": "Stack vs queue?", "marks": 5},
                    ],
                }
            ],
        },
        {"variant_id": "B", "title": "Midterm B", "sections": []},
    ],
    "marking_scheme": [
        {"question_id": "Q1", "answer_key": "A function calling itself", "rubric": "", "max_marks": 5},
    ],
}

GRADING_OUTPUT = {
    "status": "ok",
    "total_score": 7,
    "max_score": 10,
    "percentage": 70,
    "grade": "C",
    "marks_breakdown": [{"question_id": "Q1", "awarded": 4, "max_marks": 5}],
    "feedback": {"strengths": ["Clear"], "improvement_suggestions": ["Examples"], "summary": "Good"},
}

SEARCH_RESULTS = [
    {"id": "p1", "score": 0.9, "payload": {"type": "OLD_PAPER", "title": "Midterm 2023", "content": "x" * 900, "materialId": "m1"}},
]


def generate_body(course, **overrides):
    body = {
        "courseId": course.id,
        "examType": "Midterm",
        "totalMarks": 100,
        "durationMinutes": 90,
        "topicsInclude": ["recursion", "stacks"],
        "topicsExclude": [],
        "variantCount": 2,
    }
    body.update(overrides)
    return body


def test_generate_paper_persists_request_and_variants(client, db, plans, make_user, make_course, auth_headers):
    user = make_user(plan=plans["MEDIUM"])
    course = make_course(user, name="Computer Science")

    search = AsyncMock(return_value=SEARCH_RESULTS)
    generate = AsyncMock(return_value="```json\n" + json.dumps(PAPER_OUTPUT) + "\n```")
    with patch("api.index.search_course_materials", search), patch("api.index.generate_paper", generate):
        response = client.post("/api/papers/generate", json=generate_body(course), headers=auth_headers(user))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["paperRequest"]["seed"] == "seed-42"
    assert body["paperRequest"]["status"] == "GENERATED"
    assert [v["variantId"] for v in body["variants"]] == ["A", "B"]

    search.assert_awaited_once()
    args, kwargs = search.call_args
    assert args == (course.id, "Midterm recursion stacks Computer Science")
    assert kwargs["top_k"] == 12

    prompt = generate.call_args.args[0]
    assert "- user_quota_left_this_period: 5" in prompt
    assert "- tier: medium" in prompt
    assert "excerpt: " + "x" * 500 + "\n" in prompt

    assert db.query(PaperRequest).count() == 1
    variants = db.query(PaperVariant).all()
    assert len(variants) == 2
    assert all(v.marking_scheme == PAPER_OUTPUT["marking_scheme"] for v in variants)


def test_generate_requires_plan(client, make_user, make_course, auth_headers):
    user = make_user()
    course = make_course(user)
    response = client.post("/api/papers/generate", json=generate_body(course), headers=auth_headers(user))
    assert response.status_code == 403
    assert response.json()["detail"] == "No active plan"


def test_generate_enforces_monthly_quota(client, db, plans, make_user, make_course, auth_headers):
    user = make_user(plan=plans["FREE"])
    course = make_course(user)
    # Last month's paper does not count against this month
    db.add(PaperRequest(user_id=user.id, course_id=course.id, exam_type="Quiz", total_marks=10,
                        duration_minutes=10, created_at=datetime.utcnow().replace(day=1) - timedelta(days=1)))
    db.commit()

    generate = AsyncMock(return_value=json.dumps(PAPER_OUTPUT))
    with patch("api.index.search_course_materials", AsyncMock(return_value=[])), patch("api.index.generate_paper", generate):
        first = client.post("/api/papers/generate", json=generate_body(course), headers=auth_headers(user))
        second = client.post("/api/papers/generate", json=generate_body(course), headers=auth_headers(user))

    assert first.status_code == 200
    assert second.status_code == 403
    assert second.json()["detail"] == {"message": "Monthly paper limit exceeded", "code": "quota_exhausted"}
    assert generate.await_count == 1


def test_unlimited_plan_is_never_exhausted(client, db, plans, make_user, make_course, auth_headers):
    user = make_user(plan=plans["PRO"])
    course = make_course(user)
    for _ in range(3):
        db.add(PaperRequest(user_id=user.id, course_id=course.id, exam_type="Quiz", total_marks=10, duration_minutes=10))
    db.commit()

    generate = AsyncMock(return_value=json.dumps(PAPER_OUTPUT))
    with patch("api.index.search_course_materials", AsyncMock(return_value=[])), patch("api.index.generate_paper", generate):
        response = client.post("/api/papers/generate", json=generate_body(course, variantCount=9), headers=auth_headers(user))

    assert response.status_code == 200
    prompt = generate.call_args.args[0]
    assert "- user_quota_left_this_period: unlimited" in prompt
    assert "- variant_count: 5" in prompt


def test_generate_model_errors(client, plans, make_user, make_course, auth_headers):
    user = make_user(plan=plans["PRO"])
    course = make_course(user)
    headers = auth_headers(user)

    def post(output):
        with patch("api.index.search_course_materials", AsyncMock(return_value=[])), \
                patch("api.index.generate_paper", AsyncMock(return_value=output)):
            return client.post("/api/papers/generate", json=generate_body(course), headers=headers)

    error = post(json.dumps({"status": "error", "error": {"code": "unsafe", "message": "Refused"}}))
    assert error.status_code == 400
    assert error.json()["detail"] == {"message": "Refused", "code": "unsafe"}

    more = post(json.dumps({"status": "needs_more_context", "missing_fields": ["syllabus"]}))
    assert more.status_code == 422
    assert more.json()["detail"]["missingFields"] == ["syllabus"]

    assert post("not json at all").status_code == 500


def test_generate_unknown_course(client, plans, make_user, auth_headers):
    user = make_user(plan=plans["PRO"])
    body = {"courseId": "missing", "examType": "Final", "totalMarks": 50, "durationMinutes": 60}
    response = client.post("/api/papers/generate", json=body, headers=auth_headers(user))
    assert response.status_code == 404


def create_variant(db, user, course):
    paper = PaperRequest(user_id=user.id, course_id=course.id, exam_type="Midterm", total_marks=10, duration_minutes=30)
    db.add(paper)
    db.flush()
    variant = PaperVariant(
        paper_request_id=paper.id,
        variant_id="A",
        paper_data=PAPER_OUTPUT["paper"][0],
        marking_scheme=PAPER_OUTPUT["marking_scheme"],
    )
    db.add(variant)
    db.commit()
    return variant


def docx_bytes(*lines):
    document = Document()
    for line in lines:
        document.add_paragraph(line)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_grade_paper(client, db, make_user, make_course, auth_headers):
    user = make_user()
    course = make_course(user)
    variant = create_variant(db, user, course)
    content = docx_bytes("Q1: A function that calls itself.", "Q2 - Stack is LIFO, queue is FIFO.")

    grade = AsyncMock(return_value=json.dumps(GRADING_OUTPUT))
    with patch("api.index.grade_paper", grade):
        response = client.post(
            "/api/papers/grade",
            data={"paperVariantId": variant.id},
            files={"file": ("answers.docx", content, "application/octet-stream")},
            headers=auth_headers(user),
        )

    assert response.status_code == 200
    body = response.json()
    assert body["submission"]["status"] == "GRADED"
    assert body["submission"]["submittedFile"].startswith("/uploads/")
    assert body["grading"]["percentage"] == 70
    assert body["submission"]["extractedAnswers"] == [
        {"question_id": "Q1", "answer_text": "A function that calls itself."},
        {"question_id": "Q2", "answer_text": "Stack is LIFO, queue is FIFO."},
    ]

    prompt = grade.call_args.args[0]
    assert f"- paper_variant_id: {variant.id}" in prompt

    submission = db.query(PaperSubmission).one()
    assert submission.graded_at is not None
    assert db.query(GradingResult).filter_by(submission_id=submission.id).one().grade == "C"


def test_grade_validation(client, db, make_user, make_course, auth_headers):
    owner = make_user()
    other = make_user()
    course = make_course(owner)
    variant = create_variant(db, owner, course)
    docx = ("answers.docx", docx_bytes("Q1: yes"), "application/octet-stream")

    missing = client.post("/api/papers/grade", data={"paperVariantId": variant.id}, headers=auth_headers(owner))
    assert missing.status_code == 400

    unknown = client.post("/api/papers/grade", data={"paperVariantId": "nope"}, files={"file": docx}, headers=auth_headers(owner))
    assert unknown.status_code == 404

    foreign = client.post("/api/papers/grade", data={"paperVariantId": variant.id}, files={"file": docx}, headers=auth_headers(other))
    assert foreign.status_code == 403

    text_file = client.post(
        "/api/papers/grade",
        data={"paperVariantId": variant.id},
        files={"file": ("answers.txt", b"Q1: yes", "text/plain")},
        headers=auth_headers(owner),
    )
    assert text_file.status_code == 400


def test_grade_model_error_is_not_persisted(client, db, make_user, make_course, auth_headers):
    user = make_user()
    course = make_course(user)
    variant = create_variant(db, user, course)

    output = json.dumps({"status": "error", "error": {"code": "unreadable", "message": "Illegible"}})
    with patch("api.index.grade_paper", AsyncMock(return_value=output)):
        response = client.post(
            "/api/papers/grade",
            data={"paperVariantId": variant.id},
            files={"file": ("answers.docx", docx_bytes("Q1: ?"), "application/octet-stream")},
            headers=auth_headers(user),
        )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "unreadable"
    assert db.query(PaperSubmission).count() == 0


def test_list_and_get_papers(client, db, make_user, make_course, auth_headers):
    owner = make_user()
    other = make_user()
    course = make_course(owner)
    variant = create_variant(db, owner, course)
    paper_id = variant.paper_request_id

    papers = client.get("/api/papers", headers=auth_headers(owner)).json()["papers"]
    assert [p["id"] for p in papers] == [paper_id]
    assert papers[0]["variants"][0]["variantId"] == "A"

    assert client.get("/api/papers", headers=auth_headers(other)).json()["papers"] == []
    assert client.get(f"/api/papers/{paper_id}", headers=auth_headers(owner)).status_code == 200
    assert client.get(f"/api/papers/{paper_id}", headers=auth_headers(other)).status_code == 403
    assert client.get("/api/papers/missing", headers=auth_headers(owner)).status_code == 404


def test_dashboard_stats(client, db, make_user, make_course, auth_headers):
    user = make_user()
    course = make_course(user, enroll=[user])
    variant = create_variant(db, user, course)
    submission = PaperSubmission(user_id=user.id, paper_variant_id=variant.id, status="GRADED")
    db.add(submission)
    db.flush()
    db.add(GradingResult(submission_id=submission.id, percentage=80))
    db.commit()

    stats = client.get("/api/dashboard/stats", headers=auth_headers(user)).json()
    assert stats == {"totalPapers": 1, "totalCourses": 1, "papersThisMonth": 1, "averageScore": 80}
