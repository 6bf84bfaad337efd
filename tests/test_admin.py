"""Tests for the admin panel routes."""

import re
from unittest.mock import MagicMock, patch

from api.database.models import CourseMaterial, PaperRequest, Plan, StripeSubscription, SystemSetting, TeamMember, User
from api.services.retrieval import VectorStoreError


def test_admin_course_crud(client, db, make_user, make_course, make_material, auth_headers):
    team = make_user(role="TEAM")
    headers = auth_headers(team)
    body = {"name": "Networks", "description": "TCP/IP", "code": "NET101", "credits": 4}

    assert client.post("/api/admin/courses", json={"name": "Networks"}, headers=headers).status_code == 400

    created = client.post("/api/admin/courses", json=body, headers=headers)
    assert created.status_code == 201
    course = created.json()
    assert course["level"] == "Undergraduate"
    assert course["boardOrUniversity"] == "Generic University"
    assert course["_count"] == {"materials": 0, "enrollments": 0}

    duplicate = client.post("/api/admin/courses", json=body, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Course code already exists"

    # Keeping its own code is not a conflict
    updated = client.put(f"/api/admin/courses/{course['id']}", json={**body, "credits": 5}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["credits"] == 5

    other = make_course(team)
    conflict = client.put(f"/api/admin/courses/{other.id}", json=body, headers=headers)
    assert conflict.status_code == 400

    make_material(other)
    assert client.delete(f"/api/admin/courses/{other.id}", headers=headers).status_code == 400
    assert client.delete(f"/api/admin/courses/{course['id']}", headers=headers).status_code == 200
    assert client.get("/api/admin/courses", headers=headers).json()[0]["id"] == other.id


def test_course_deactivation_drops_vectors(client, make_user, make_course, make_material, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    headers = auth_headers(admin)
    course = make_course(admin)
    active = make_material(course, title="Active")
    make_material(course, title="Hidden", is_active=False)
    body = {"name": course.name, "description": "d", "code": course.code, "credits": 3}

    with patch("api.admin.delete_course_points") as delete_points, \
            patch("api.admin.index_material_background", new=MagicMock()) as reindex:
        off = client.put(f"/api/admin/courses/{course.id}", json={**body, "isActive": False}, headers=headers)
        assert off.json()["isActive"] is False
        delete_points.assert_called_once_with(course.id)
        reindex.assert_not_called()

        on = client.put(f"/api/admin/courses/{course.id}", json={**body, "isActive": True}, headers=headers)
        assert on.json()["isActive"] is True
        reindex.assert_called_once_with(active.id)
        assert delete_points.call_count == 1


def test_course_delete_clears_vectors_and_tolerates_store_errors(client, make_user, auth_headers):
    team = make_user(role="TEAM")
    headers = auth_headers(team)
    created = client.post(
        "/api/admin/courses",
        json={"name": "Optics", "description": "Light", "code": "OPT1", "credits": 2},
        headers=headers,
    ).json()

    with patch("api.admin.delete_course_points", side_effect=VectorStoreError("down")) as delete_points:
        response = client.delete(f"/api/admin/courses/{created['id']}", headers=headers)

    assert response.status_code == 200
    delete_points.assert_called_once_with(created["id"])


def test_create_material_schedules_indexing(client, db, make_user, make_course, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    course = make_course(admin)
    body = {
        "title": "Syllabus",
        "description": "Course outline",
        "type": "SYLLABUS",
        "courseId": course.id,
        "fileUrl": "/uploads/syllabus.pdf",
        "fileSize": 1234,
    }

    assert client.post("/api/admin/materials", json={**body, "courseId": "missing"}, headers=auth_headers(admin)).status_code == 404
    assert client.post("/api/admin/materials", json={**body, "type": "VIDEO"}, headers=auth_headers(admin)).status_code == 400
    assert client.post("/api/admin/materials", json={**body, "fileUrl": None}, headers=auth_headers(admin)).status_code == 400

    response = client.post("/api/admin/materials", json=body, headers=auth_headers(admin))
    assert response.status_code == 201
    material = response.json()
    assert material["course"] == {"name": course.name, "code": course.code}
    assert material["uploadedBy"]["id"] == admin.id

    # Background indexing ran with Qdrant disabled
    db.expire_all()
    assert db.query(CourseMaterial).filter_by(id=material["id"]).one().index_status == "skipped"


def test_update_material_keeps_file(client, db, make_user, make_course, make_material, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    course = make_course(admin)
    material = make_material(course, file_url="/uploads/keep.pdf")

    response = client.put(
        f"/api/admin/materials/{material.id}",
        json={"title": "Renamed", "description": "d", "type": "REFERENCE", "courseId": course.id},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["fileUrl"] == "/uploads/keep.pdf"


def test_delete_material_survives_cleanup_failures(client, db, make_user, make_course, make_material, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    course = make_course(admin)
    material = make_material(course, file_url="/uploads/not-there.pdf")

    with patch("api.admin.delete_material_points", side_effect=VectorStoreError("down")):
        response = client.delete(f"/api/admin/materials/{material.id}", headers=auth_headers(admin))

    assert response.status_code == 200
    db.expire_all()
    assert db.query(CourseMaterial).count() == 0


def test_upload_material_file(client, make_user, auth_headers):
    from api.services.storage import path_for_url

    team = make_user(role="TEAM")
    headers = auth_headers(team)

    response = client.post(
        "/api/admin/materials/upload",
        files={"file": ("notes.txt", b"Binary search halves the range.", "text/plain")},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert re.fullmatch(r"\d+_[0-9a-f]{12}\.txt", body["fileName"])
    assert body["fileUrl"] == f"/uploads/{body['fileName']}"
    assert body["fileSize"] == 31
    assert body["fileUrl"].startswith("/uploads/") and body["fileUrl"].endswith(".txt")
    assert path_for_url(body["fileUrl"]).read_bytes() == b"Binary search halves the range."

    image = client.post("/api/admin/materials/upload", files={"file": ("pic.png", b"png", "image/png")}, headers=headers)
    assert image.status_code == 400

    too_big = client.post(
        "/api/admin/materials/upload",
        files={"file": ("big.pdf", b"0" * (10 * 1024 * 1024 + 1), "application/pdf")},
        headers=headers,
    )
    assert too_big.status_code == 400


def test_sync_requires_super_admin_and_qdrant(client, make_user, auth_headers):
    team = make_user(role="TEAM")
    admin = make_user(role="SUPER_ADMIN")

    assert client.post("/api/admin/materials/sync", headers=auth_headers(team)).status_code == 403
    assert client.post("/api/admin/materials/sync", headers=auth_headers(admin)).status_code == 400


def test_plan_crud(client, db, plans, make_user, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    headers = auth_headers(admin)

    listed = client.get("/api/admin/plans", headers=headers).json()
    assert [p["tier"] for p in listed] == ["FREE", "MEDIUM", "PRO"]

    body = {"name": "Team", "description": "For teams", "tier": "ENTERPRISE", "price": 99, "maxPapersPerMonth": 50, "maxVariants": 5}
    assert client.post("/api/admin/plans", json=body, headers=headers).status_code == 400

    created = client.post("/api/admin/plans", json={**body, "tier": "PRO"}, headers=headers)
    assert created.status_code == 201
    plan_id = created.json()["id"]

    updated = client.put(f"/api/admin/plans/{plan_id}", json={**body, "tier": "PRO", "price": 89}, headers=headers)
    assert updated.json()["price"] == 89

    make_user(plan=plans["FREE"])
    assert client.delete(f"/api/admin/plans/{plans['FREE'].id}", headers=headers).status_code == 400
    assert client.delete(f"/api/admin/plans/{plan_id}", headers=headers).status_code == 200
    assert db.query(Plan).count() == 3


def test_team_crud_and_members(client, db, make_user, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    member = make_user(email="member@example.com")
    headers = auth_headers(admin)

    assert client.post("/api/admin/teams", json={}, headers=headers).status_code == 400
    team = client.post("/api/admin/teams", json={"name": "Physics"}, headers=headers).json()

    added = client.post(f"/api/admin/teams/{team['id']}/members", json={"email": "member@example.com"}, headers=headers)
    assert added.status_code == 201
    again = client.post(f"/api/admin/teams/{team['id']}/members", json={"userId": member.id}, headers=headers)
    assert again.status_code == 409

    members = client.get(f"/api/admin/teams/{team['id']}/members", headers=headers).json()
    assert [m["email"] for m in members] == ["member@example.com"]
    assert client.get("/api/admin/teams", headers=headers).json()[0]["memberCount"] == 1

    assert client.delete(f"/api/admin/teams/{team['id']}", headers=headers).status_code == 400
    db.query(TeamMember).delete()
    db.commit()
    assert client.delete(f"/api/admin/teams/{team['id']}", headers=headers).status_code == 200


def test_student_detail_and_delete(client, db, make_user, make_course, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    busy = make_user()
    idle = make_user()
    idle_id = idle.id
    course = make_course(admin, enroll=[busy])
    db.add(PaperRequest(user_id=busy.id, course_id=course.id, exam_type="Quiz", total_marks=10, duration_minutes=10))
    db.commit()
    headers = auth_headers(admin)

    detail = client.get(f"/api/admin/students/{busy.id}", headers=headers).json()
    assert detail["courses"][0]["course"]["code"] == course.code
    assert detail["paperRequests"][0]["course"] == {"name": course.name}

    assert {s["id"] for s in client.get("/api/admin/students", headers=headers).json()} == {busy.id, idle_id}

    assert client.delete(f"/api/admin/students/{busy.id}", headers=headers).status_code == 400
    assert client.delete(f"/api/admin/students/{admin.id}", headers=headers).status_code == 403
    assert client.delete("/api/admin/students/missing", headers=headers).status_code == 404
    assert client.delete(f"/api/admin/students/{idle_id}", headers=headers).status_code == 200
    db.expire_all()
    assert db.query(User).filter_by(id=idle_id).first() is None


def test_admin_stats(client, db, plans, make_user, make_course, make_material, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    make_user(role="TEAM")
    student = make_user(plan=plans["MEDIUM"])
    make_material(make_course(admin))
    db.add(StripeSubscription(user_id=student.id, plan_id=plans["MEDIUM"].id, status="active", amount=19))
    db.commit()

    stats = client.get("/api/admin/stats", headers=auth_headers(admin)).json()
    assert stats["totalStudents"] == 1
    assert stats["totalTeams"] == 1
    assert stats["totalCourses"] == 1
    assert stats["totalMaterials"] == 1
    assert stats["totalPlans"] == 3
    assert stats["activeSubscriptions"] == 1
    assert stats["averageScore"] == 0


def test_analytics(client, db, plans, make_user, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    student = make_user()
    db.add(StripeSubscription(user_id=student.id, plan_id=plans["PRO"].id, status="active", amount=49))
    db.commit()

    response = client.get("/api/admin/analytics?period=7d", headers=auth_headers(admin))
    assert response.status_code == 200
    data = response.json()
    assert data["period"] == "7d"
    assert data["overview"]["totalUsers"] == 2
    assert data["overview"]["totalRevenue"] == 49
    assert sum(day["newUsers"] for day in data["userGrowth"]) == 2
    assert data["revenueData"][0]["revenue"] == 49
    assert len(data["recentActivity"]) == 2
    assert {e["status"] for e in data["systemHealth"]} <= {"healthy", "warning", "error"}

    assert client.get("/api/admin/analytics?period=bogus", headers=auth_headers(admin)).json()["period"] == "30d"


def test_settings_roundtrip(client, db, make_user, auth_headers):
    admin = make_user(role="SUPER_ADMIN")
    headers = auth_headers(admin)

    settings = client.get("/api/admin/settings", headers=headers).json()
    assert settings["general"]["siteName"] == "TAT Paper Generator"

    assert client.put("/api/admin/settings", json={"section": "billing", "data": {"x": 1}}, headers=headers).status_code == 400
    assert client.put("/api/admin/settings", json={"section": "system"}, headers=headers).status_code == 400

    saved = client.put("/api/admin/settings", json={"section": "system", "data": {"maintenanceMode": True}}, headers=headers)
    assert saved.status_code == 200
    assert saved.json()["settings"]["maintenanceMode"] is True
    assert saved.json()["settings"]["logLevel"] == "info"

    assert client.get("/api/admin/settings", headers=headers).json()["system"]["maintenanceMode"] is True
    assert db.query(SystemSetting).filter_by(section="system").count() == 1
